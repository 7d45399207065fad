"""Dashboard notification sink (WebSocket push to connected agents)."""

import logging
from collections import defaultdict
from typing import Any

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class DashboardNotifier:
    """In-memory registry of dashboard sockets keyed by tenant.

    Broadcasting never raises: a socket that fails to receive is dropped
    and the failure is logged.
    """

    def __init__(self) -> None:
        self._sessions: dict[int, set[WebSocket]] = defaultdict(set)

    def register(self, tenant_id: int, websocket: WebSocket) -> None:
        self._sessions[tenant_id].add(websocket)
        logger.info(
            "Dashboard session registered",
            extra={"tenant_id": tenant_id, "sessions": len(self._sessions[tenant_id])},
        )

    def unregister(self, websocket: WebSocket) -> None:
        for tenant_id in list(self._sessions):
            sockets = self._sessions[tenant_id]
            if websocket in sockets:
                sockets.discard(websocket)
                if not sockets:
                    del self._sessions[tenant_id]
                logger.info("Dashboard session unregistered", extra={"tenant_id": tenant_id})

    def session_count(self, tenant_id: int) -> int:
        return len(self._sessions.get(tenant_id, ()))

    async def broadcast_to_tenant(
        self, tenant_id: int, event: str, payload: dict[str, Any]
    ) -> int:
        """Send an event to every open session of a tenant.

        Args:
            tenant_id: Tenant ID
            event: Event name, e.g. ``handoff:claimed``
            payload: JSON-serializable event data

        Returns:
            Number of sessions the event was delivered to
        """
        message = {"event": event, "data": jsonable_encoder(payload)}
        delivered = 0
        for websocket in list(self._sessions.get(tenant_id, ())):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Dropping dashboard session after send failure: {e}",
                    extra={"tenant_id": tenant_id, "event": event},
                )
                self.unregister(websocket)
        return delivered


dashboard_notifier = DashboardNotifier()

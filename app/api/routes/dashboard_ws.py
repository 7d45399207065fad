"""Dashboard WebSocket: live handoff and message events for a tenant."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import user_id_from_token
from app.infrastructure.notifications import dashboard_notifier
from app.persistence.database import get_session_factory
from app.persistence.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/dashboard")
async def dashboard_socket(
    websocket: WebSocket,
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    token: str = Query(...),
) -> None:
    """Authenticate with ``?token=<jwt>`` and receive ``{"event", "data"}`` frames.

    The user lookup uses its own short session so no connection is held for
    the lifetime of the socket. Incoming frames are ignored apart from
    keeping the connection alive.
    """
    user_id = user_id_from_token(token)
    tenant_id = None
    if user_id is not None:
        async with session_factory() as session:
            user = await UserRepository(session).get_by_id(None, user_id)
            tenant_id = user.tenant_id if user else None

    if tenant_id is None:
        logger.warning("Rejected dashboard socket with invalid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    dashboard_notifier.register(tenant_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        dashboard_notifier.unregister(websocket)

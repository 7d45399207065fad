"""Provider-side session cleanup run after a conversation is resolved."""

import logging
from typing import Protocol

import httpx

from app.persistence.models.handoff import Handoff
from app.settings import settings

logger = logging.getLogger(__name__)


class SessionCleanup(Protocol):
    """Ends external resources tied to a handoff (e.g. a provider chat)."""

    async def end_session(self, handoff: Handoff) -> None:
        ...


class NoopSessionCleanup:
    """Used when no provider endpoint is configured."""

    async def end_session(self, handoff: Handoff) -> None:
        return None


class HttpSessionCleanup:
    """POSTs the external session id to a provider endpoint."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = http_client

    async def end_session(self, handoff: Handoff) -> None:
        """End the provider session; raises on failure (caller logs it)."""
        external_session_id = (handoff.handoff_metadata or {}).get("external_session_id")
        if not external_session_id:
            return

        if self._client is not None:
            response = await self._client.post(
                self.url,
                json={"external_session_id": external_session_id},
                timeout=self.timeout_seconds,
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    self.url,
                    json={"external_session_id": external_session_id},
                )
        response.raise_for_status()

        logger.info(
            "Ended provider session",
            extra={
                "tenant_id": handoff.tenant_id,
                "handoff_id": handoff.id,
                "external_session_id": external_session_id,
            },
        )


def build_session_cleanup() -> SessionCleanup:
    """Pick the cleanup implementation from settings."""
    if settings.session_cleanup_url:
        return HttpSessionCleanup(
            settings.session_cleanup_url,
            timeout_seconds=settings.session_cleanup_timeout_seconds,
        )
    return NoopSessionCleanup()

"""Webhook analytics: per-tenant summaries, call history and retention."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.persistence.models.webhook import WebhookCall
from app.persistence.repositories.webhook_repository import WebhookCallRepository

logger = logging.getLogger(__name__)


@dataclass
class WebhookAnalyticsSummary:
    """Aggregated webhook outcomes for a tenant."""
    total_calls: int
    successful_calls: int
    failed_calls: int
    average_response_time_ms: float

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return round(self.successful_calls / self.total_calls * 100, 2)


class WebhookAnalyticsService:
    """Read side of the webhook call records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.call_repo = WebhookCallRepository(session)

    async def summary(
        self,
        tenant_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> WebhookAnalyticsSummary:
        """Summarize a tenant's webhook calls over an optional window.

        Args:
            tenant_id: Tenant ID
            start: Inclusive lower bound on call time
            end: Inclusive upper bound on call time

        Returns:
            WebhookAnalyticsSummary
        """
        totals = await self.call_repo.summary(tenant_id, start, end)
        return WebhookAnalyticsSummary(**totals)

    async def list_calls(
        self, tenant_id: int, webhook_id: int | None = None, limit: int = 50
    ) -> list[WebhookCall]:
        return await self.call_repo.list_calls(tenant_id, webhook_id, limit)

    async def purge_older_than(self, days: int, now: datetime | None = None) -> int:
        """Delete call records older than ``days``.

        Returns:
            Number of deleted records
        """
        cutoff = (now or datetime.utcnow()) - timedelta(days=days)
        deleted = await self.call_repo.purge_older_than(cutoff)
        logger.info(
            f"Purged {deleted} webhook call records",
            extra={"cutoff": cutoff.isoformat(), "deleted": deleted},
        )
        return deleted

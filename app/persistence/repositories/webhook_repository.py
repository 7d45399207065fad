"""Webhook registration and webhook call repositories."""

from datetime import datetime
from typing import Any

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.persistence.models.webhook import WebhookCall, WebhookRegistration
from app.persistence.repositories.base import BaseRepository


class WebhookRepository(BaseRepository[WebhookRegistration]):
    """Repository for WebhookRegistration entities."""

    def __init__(self, session: AsyncSession):
        """Initialize webhook repository."""
        super().__init__(WebhookRegistration, session)

    async def get_active_by_name(
        self, tenant_id: int, workflow_name: str
    ) -> WebhookRegistration | None:
        """Get the active registration for a tenant's workflow."""
        stmt = select(WebhookRegistration).where(
            WebhookRegistration.tenant_id == tenant_id,
            WebhookRegistration.workflow_name == workflow_name,
            WebhookRegistration.is_active.is_(True),
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_active(self, tenant_id: int) -> list[WebhookRegistration]:
        stmt = (
            select(WebhookRegistration)
            .where(
                WebhookRegistration.tenant_id == tenant_id,
                WebhookRegistration.is_active.is_(True),
            )
            .order_by(WebhookRegistration.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_tenant(self, tenant_id: int) -> list[WebhookRegistration]:
        stmt = (
            select(WebhookRegistration)
            .where(WebhookRegistration.tenant_id == tenant_id)
            .order_by(WebhookRegistration.workflow_name.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def increment_stats(self, webhook_id: int, success: bool) -> None:
        """Bump usage counters with a single atomic UPDATE.

        Args:
            webhook_id: Registration ID
            success: Whether the terminal outcome was a success
        """
        values = {
            "total_calls": WebhookRegistration.total_calls + 1,
            "last_called_at": datetime.utcnow(),
        }
        if success:
            values["successful_calls"] = WebhookRegistration.successful_calls + 1
        else:
            values["failed_calls"] = WebhookRegistration.failed_calls + 1

        stmt = (
            update(WebhookRegistration)
            .where(WebhookRegistration.id == webhook_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.commit()


class WebhookCallRepository(BaseRepository[WebhookCall]):
    """Repository for WebhookCall analytics rows (append-only)."""

    def __init__(self, session: AsyncSession):
        """Initialize webhook call repository."""
        super().__init__(WebhookCall, session)

    async def list_calls(
        self, tenant_id: int, webhook_id: int | None = None, limit: int = 50
    ) -> list[WebhookCall]:
        """List call records newest first."""
        stmt = select(WebhookCall).where(WebhookCall.tenant_id == tenant_id)
        if webhook_id is not None:
            stmt = stmt.where(WebhookCall.webhook_id == webhook_id)
        stmt = stmt.order_by(WebhookCall.created_at.desc(), WebhookCall.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def summary(
        self,
        tenant_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        """Aggregate call records for a tenant over an optional window.

        Returns:
            Dict with total_calls, successful_calls, failed_calls and
            average_response_time_ms
        """
        stmt = select(
            func.count(WebhookCall.id),
            func.coalesce(func.sum(case((WebhookCall.success.is_(True), 1), else_=0)), 0),
            func.avg(WebhookCall.response_time_ms),
        ).where(WebhookCall.tenant_id == tenant_id)
        if start is not None:
            stmt = stmt.where(WebhookCall.created_at >= start)
        if end is not None:
            stmt = stmt.where(WebhookCall.created_at <= end)

        result = await self.session.execute(stmt)
        total, successful, average = result.one()
        total = int(total or 0)
        successful = int(successful or 0)
        return {
            "total_calls": total,
            "successful_calls": successful,
            "failed_calls": total - successful,
            "average_response_time_ms": float(average) if average is not None else 0.0,
        }

    async def purge_older_than(self, cutoff: datetime) -> int:
        """Delete records created before ``cutoff``.

        Returns:
            Number of deleted rows
        """
        stmt = (
            delete(WebhookCall)
            .where(WebhookCall.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount or 0

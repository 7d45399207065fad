"""Maintenance worker endpoints triggered by Cloud Scheduler / cron."""

import logging
from datetime import datetime, timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_handoff_service,
    get_webhook_analytics_service,
    require_worker_token,
)
from app.domain.services.handoff_service import HandoffService
from app.domain.services.webhook_analytics_service import WebhookAnalyticsService
from app.persistence.database import get_db
from app.persistence.repositories.human_agent_repository import HumanAgentRepository
from app.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_worker_token)])


@router.post("/handoff-timeouts")
async def expire_stale_handoffs(
    service: Annotated[HandoffService, Depends(get_handoff_service)],
) -> dict[str, Any]:
    """Close unclaimed handoffs older than the pending timeout."""
    expired = await service.expire_stale_handoffs()
    logger.info(f"Handoff timeout sweep closed {expired} conversations")
    return {"status": "ok", "expired": expired}


@router.post("/agent-presence")
async def mark_stale_agents_offline(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict[str, Any]:
    """Take agents offline when their dashboard stopped sending heartbeats."""
    cutoff = datetime.utcnow() - timedelta(seconds=settings.agent_offline_threshold_seconds)
    updated = await HumanAgentRepository(db).mark_stale_offline(cutoff)
    if updated:
        logger.info(f"Agent presence sweep marked {updated} agents offline")
    return {"status": "ok", "offline": updated}


@router.post("/webhook-analytics-retention")
async def purge_webhook_analytics(
    analytics: Annotated[WebhookAnalyticsService, Depends(get_webhook_analytics_service)],
) -> dict[str, Any]:
    """Delete webhook call records past the retention window."""
    deleted = await analytics.purge_older_than(settings.webhook_analytics_retention_days)
    return {"status": "ok", "deleted": deleted}

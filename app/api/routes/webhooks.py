"""Webhook registration, connectivity test and analytics routes."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_webhook_analytics_service,
    get_webhook_service,
    require_tenant_context,
)
from app.api.schemas.webhook import (
    WebhookAnalyticsSummaryResponse,
    WebhookCallResponse,
    WebhookResponse,
    WebhookTestResponse,
)
from app.domain.services.webhook_analytics_service import WebhookAnalyticsService
from app.domain.services.webhook_service import WebhookDeliveryService
from app.persistence.database import get_db
from app.persistence.repositories.webhook_repository import WebhookRepository

router = APIRouter()


@router.get("", response_model=list[WebhookResponse])
async def list_webhooks(
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[WebhookResponse]:
    """List the tenant's registrations with usage counters."""
    webhooks = await WebhookRepository(db).list_for_tenant(tenant_id)
    return [
        WebhookResponse(
            id=webhook.id,
            tenant_id=webhook.tenant_id,
            workflow_name=webhook.workflow_name,
            webhook_url=webhook.webhook_url,
            description=webhook.description,
            is_active=webhook.is_active,
            has_auth_token=bool(webhook.auth_token),
            total_calls=webhook.total_calls,
            successful_calls=webhook.successful_calls,
            failed_calls=webhook.failed_calls,
            last_called_at=webhook.last_called_at,
        )
        for webhook in webhooks
    ]


# Declared before "/{webhook_id}/..." paths so "analytics" is not read as an id
@router.get("/analytics/summary", response_model=WebhookAnalyticsSummaryResponse)
async def webhook_analytics_summary(
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    analytics: Annotated[WebhookAnalyticsService, Depends(get_webhook_analytics_service)],
    start: datetime | None = None,
    end: datetime | None = None,
) -> WebhookAnalyticsSummaryResponse:
    summary = await analytics.summary(tenant_id, start, end)
    return WebhookAnalyticsSummaryResponse(
        total_calls=summary.total_calls,
        successful_calls=summary.successful_calls,
        failed_calls=summary.failed_calls,
        average_response_time_ms=summary.average_response_time_ms,
        success_rate=summary.success_rate,
    )


@router.post("/{webhook_id}/test", response_model=WebhookTestResponse)
async def test_webhook(
    webhook_id: int,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
    webhook_service: Annotated[WebhookDeliveryService, Depends(get_webhook_service)],
) -> WebhookTestResponse:
    """Send a test payload; counters and analytics are left untouched."""
    webhook = await WebhookRepository(db).get_by_id(tenant_id, webhook_id)
    if webhook is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found",
        )

    result = await webhook_service.test_webhook(webhook_id, tenant_id=tenant_id)
    return WebhookTestResponse(
        success=result.success,
        response_time_ms=result.response_time_ms,
        error_message=result.error_message,
    )


@router.get("/{webhook_id}/calls", response_model=list[WebhookCallResponse])
async def list_webhook_calls(
    webhook_id: int,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    analytics: Annotated[WebhookAnalyticsService, Depends(get_webhook_analytics_service)],
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[WebhookCallResponse]:
    calls = await analytics.list_calls(tenant_id, webhook_id, limit)
    return [WebhookCallResponse.model_validate(call) for call in calls]

"""Tests for webhook analytics."""

from datetime import datetime, timedelta

import pytest

from app.domain.services.webhook_analytics_service import WebhookAnalyticsService
from app.persistence.models.webhook import WebhookCall


@pytest.fixture
async def recorded(db_session, tenant, other_tenant, make_webhook):
    """Call records spread over the last ten days."""
    now = datetime.utcnow()
    booking = await make_webhook(workflow_name="booking_request")
    handoff = await make_webhook(workflow_name="handoff_requested")
    foreign = await make_webhook(workflow_name="handoff_requested", tenant_id=other_tenant.id)

    rows = [
        (booking, True, 100.0, now - timedelta(days=10)),
        (booking, False, 300.0, now - timedelta(days=2)),
        (handoff, True, 200.0, now - timedelta(hours=1)),
        (handoff, True, 400.0, now - timedelta(minutes=5)),
        (foreign, False, 999.0, now - timedelta(minutes=5)),
    ]
    for webhook, success, elapsed, created_at in rows:
        db_session.add(
            WebhookCall(
                webhook_id=webhook.id,
                tenant_id=webhook.tenant_id,
                request_payload={"event": webhook.workflow_name},
                status_code=200 if success else 500,
                response_time_ms=elapsed,
                attempt_count=1 if success else 3,
                success=success,
                error_message=None if success else "HTTP 500: Internal Server Error",
                created_at=created_at,
            )
        )
    await db_session.commit()
    return {"now": now, "booking": booking, "handoff": handoff}


@pytest.mark.asyncio
async def test_summary_for_tenant(db_session, tenant, recorded):
    summary = await WebhookAnalyticsService(db_session).summary(tenant.id)

    assert summary.total_calls == 4
    assert summary.successful_calls == 3
    assert summary.failed_calls == 1
    assert summary.average_response_time_ms == 250.0
    assert summary.success_rate == 75.0


@pytest.mark.asyncio
async def test_summary_window(db_session, tenant, recorded):
    now = recorded["now"]

    summary = await WebhookAnalyticsService(db_session).summary(
        tenant.id, start=now - timedelta(days=3), end=now
    )

    assert summary.total_calls == 3
    assert summary.successful_calls == 2


@pytest.mark.asyncio
async def test_summary_without_calls(db_session, tenant):
    summary = await WebhookAnalyticsService(db_session).summary(tenant.id)

    assert summary.total_calls == 0
    assert summary.average_response_time_ms == 0.0
    assert summary.success_rate == 0.0


@pytest.mark.asyncio
async def test_list_calls_newest_first(db_session, tenant, recorded):
    service = WebhookAnalyticsService(db_session)

    calls = await service.list_calls(tenant.id)
    assert [c.response_time_ms for c in calls] == [400.0, 200.0, 300.0, 100.0]

    handoff_calls = await service.list_calls(tenant.id, webhook_id=recorded["handoff"].id, limit=1)
    assert [c.response_time_ms for c in handoff_calls] == [400.0]


@pytest.mark.asyncio
async def test_purge_older_than(db_session, tenant, recorded):
    service = WebhookAnalyticsService(db_session)

    deleted = await service.purge_older_than(days=7, now=recorded["now"])

    assert deleted == 1
    remaining = await service.list_calls(tenant.id)
    assert len(remaining) == 3

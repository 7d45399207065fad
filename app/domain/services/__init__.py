"""Domain services."""

from app.domain.services.handoff_service import HandoffService
from app.domain.services.webhook_analytics_service import WebhookAnalyticsService
from app.domain.services.webhook_service import WebhookDeliveryService

__all__ = ["HandoffService", "WebhookDeliveryService", "WebhookAnalyticsService"]

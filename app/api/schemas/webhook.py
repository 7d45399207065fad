"""Webhook registration and analytics schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class WebhookResponse(BaseModel):
    """Webhook registration response (auth token is never returned)."""

    id: int
    tenant_id: int
    workflow_name: str
    webhook_url: str
    description: str | None = None
    is_active: bool
    has_auth_token: bool = False
    total_calls: int
    successful_calls: int
    failed_calls: int
    last_called_at: datetime | None = None

    class Config:
        from_attributes = True


class WebhookTestResponse(BaseModel):
    success: bool
    response_time_ms: float
    error_message: str | None = None


class WebhookCallResponse(BaseModel):
    """One recorded delivery."""

    id: int
    webhook_id: int
    status_code: int | None = None
    response_time_ms: float
    attempt_count: int
    success: bool
    error_message: str | None = None
    request_payload: dict[str, Any]
    response_body: Any = None
    created_at: datetime

    class Config:
        from_attributes = True


class WebhookAnalyticsSummaryResponse(BaseModel):
    total_calls: int
    successful_calls: int
    failed_calls: int
    average_response_time_ms: float
    success_rate: float

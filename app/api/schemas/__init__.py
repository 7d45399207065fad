"""API schemas package."""

from app.api.schemas.handoff import (
    HandoffClaim,
    HandoffCreate,
    HandoffReassign,
    HandoffRequest,
    HandoffResolve,
    HandoffResponse,
    HumanAgentCreate,
    HumanAgentResponse,
    HumanAgentStatusUpdate,
    MessageCreate,
    MessageResponse,
)
from app.api.schemas.webhook import (
    WebhookAnalyticsSummaryResponse,
    WebhookCallResponse,
    WebhookResponse,
    WebhookTestResponse,
)

__all__ = [
    "HandoffClaim",
    "HandoffCreate",
    "HandoffReassign",
    "HandoffRequest",
    "HandoffResolve",
    "HandoffResponse",
    "HumanAgentCreate",
    "HumanAgentResponse",
    "HumanAgentStatusUpdate",
    "MessageCreate",
    "MessageResponse",
    "WebhookAnalyticsSummaryResponse",
    "WebhookCallResponse",
    "WebhookResponse",
    "WebhookTestResponse",
]

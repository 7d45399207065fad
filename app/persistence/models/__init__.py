"""Database models."""

from app.persistence.models.handoff import (
    Handoff,
    HandoffMessage,
    HandoffStatus,
    ResolutionReason,
    SenderType,
)
from app.persistence.models.human_agent import AgentStatus, HumanAgent
from app.persistence.models.tenant import Tenant, User
from app.persistence.models.webhook import WebhookCall, WebhookRegistration

__all__ = [
    "Tenant",
    "User",
    "HumanAgent",
    "AgentStatus",
    "Handoff",
    "HandoffMessage",
    "HandoffStatus",
    "SenderType",
    "ResolutionReason",
    "WebhookRegistration",
    "WebhookCall",
]

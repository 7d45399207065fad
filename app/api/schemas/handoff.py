"""Handoff and human agent schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, EmailStr, Field

from app.domain.models.handoff_context import HandoffMetadata
from app.persistence.models.handoff import ResolutionReason
from app.persistence.models.human_agent import AgentStatus


class HandoffCreate(BaseModel):
    """Start a conversation."""

    chat_id: str = Field(..., min_length=1, max_length=255)
    metadata: HandoffMetadata | None = None


class HandoffRequest(BaseModel):
    """Escalate a conversation to the human queue."""

    reason: str = "user_request"
    user_email: EmailStr | None = None
    user_message: str | None = None


class HandoffClaim(BaseModel):
    """Claim a pending conversation.

    When ``agent_id`` is omitted the agent is resolved from the caller's email.
    """

    agent_id: int | None = None


class HandoffReassign(BaseModel):
    agent_id: int


class HandoffResolve(BaseModel):
    reason: ResolutionReason | None = None
    agent_id: int | None = None


class HandoffResponse(BaseModel):
    """Handoff response."""

    id: int
    tenant_id: int
    chat_id: str
    channel: str
    status: str
    assigned_agent_id: int | None = None
    requested_at: datetime | None = None
    picked_up_at: datetime | None = None
    resolved_at: datetime | None = None
    resolution_reason: str | None = None
    resolved_by_agent_id: int | None = None
    last_user_message: str | None = None
    conversation_history: list[dict[str, Any]] | None = None
    metadata: dict[str, Any] | None = Field(None, validation_alias="handoff_metadata")
    user_email: str | None = None
    user_message: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class MessageCreate(BaseModel):
    """Message creation request."""

    sender_type: str = Field(..., pattern="^(user|agent|ai|assistant|system)$")
    content: str = Field(..., min_length=1)
    sender_id: int | None = None


class MessageResponse(BaseModel):
    """Message response."""

    id: int
    handoff_id: int
    sender_type: str
    sender_id: int | None = None
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class HumanAgentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    max_chats: int = Field(5, ge=1, le=100)
    status: AgentStatus = AgentStatus.OFFLINE


class HumanAgentStatusUpdate(BaseModel):
    status: AgentStatus


class HumanAgentResponse(BaseModel):
    """Human agent response."""

    id: int
    tenant_id: int
    name: str
    email: str
    status: str
    active_chats: int
    max_chats: int
    last_seen: datetime | None = None

    class Config:
        from_attributes = True

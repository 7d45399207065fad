"""Handoff (conversation) and HandoffMessage models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from app.persistence.database import Base


class HandoffStatus(str, Enum):
    """Lifecycle of a conversation between the AI agent and a human."""

    AI = "ai"
    PENDING_HANDOFF = "pending_handoff"
    WITH_HUMAN = "with_human"
    RESOLVED = "resolved"


class SenderType(str, Enum):
    """Who wrote a message."""

    USER = "user"
    AGENT = "agent"
    AI = "ai"
    SYSTEM = "system"

    @classmethod
    def parse(cls, value: str) -> "SenderType":
        """Parse a sender type, accepting ``assistant`` as an alias of ``ai``."""
        if value == "assistant":
            return cls.AI
        return cls(value)


class ResolutionReason(str, Enum):
    """Why a conversation was closed."""

    AGENT_RESOLVED = "agent_resolved"
    USER_ENDED = "user_ended"
    ENDED_EARLY = "ended_early"
    TIMEOUT = "timeout"


class Handoff(Base):
    """A customer conversation tracked through its AI/human lifecycle.

    Rows are never deleted; resolved conversations are kept for analytics.
    """

    __tablename__ = "handoffs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    chat_id = Column(String(255), nullable=False, index=True)  # widget session / provider chat id
    channel = Column(String(20), default="widget", nullable=False)  # widget, whatsapp, voice

    status = Column(String(30), default=HandoffStatus.AI.value, nullable=False)
    assigned_agent_id = Column(Integer, ForeignKey("human_agents.id"), nullable=True, index=True)

    requested_at = Column(DateTime, nullable=True)
    picked_up_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolution_reason = Column(String(30), nullable=True)
    resolved_by_agent_id = Column(Integer, ForeignKey("human_agents.id"), nullable=True)

    # Context handed to the agent
    last_user_message = Column(Text, nullable=True)
    conversation_history = Column(JSON, nullable=True)  # list of ConversationTurn dicts
    handoff_metadata = Column("metadata", JSON, nullable=True)  # HandoffMetadata dict

    # After-hours contact details collected when nobody is online
    user_email = Column(String(255), nullable=True)
    user_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_handoffs_tenant_status", "tenant_id", "status"),
    )

    # Relationships
    tenant = relationship("Tenant", back_populates="handoffs")
    assigned_agent = relationship("HumanAgent", foreign_keys=[assigned_agent_id])
    messages = relationship(
        "HandoffMessage",
        back_populates="handoff",
        order_by="[HandoffMessage.created_at, HandoffMessage.id]",
    )

    def __repr__(self) -> str:
        return f"<Handoff(id={self.id}, tenant_id={self.tenant_id}, status={self.status})>"


class HandoffMessage(Base):
    """Append-only message within a handoff conversation."""

    __tablename__ = "handoff_messages"

    id = Column(Integer, primary_key=True, index=True)
    handoff_id = Column(Integer, ForeignKey("handoffs.id"), nullable=False, index=True)
    sender_type = Column(String(20), nullable=False)  # user, agent, ai, system
    sender_id = Column(Integer, nullable=True)  # human_agents.id for agent messages
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    handoff = relationship("Handoff", back_populates="messages")

    def __repr__(self) -> str:
        return f"<HandoffMessage(id={self.id}, handoff_id={self.handoff_id}, sender_type={self.sender_type})>"

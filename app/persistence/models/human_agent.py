"""Human agent model (staff who take over live chats)."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.persistence.database import Base


class AgentStatus(str, Enum):
    """Availability of a human agent."""

    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class HumanAgent(Base):
    """A tenant's support agent who can claim pending handoffs."""

    __tablename__ = "human_agents"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    status = Column(String(20), default=AgentStatus.AVAILABLE.value, nullable=False)
    active_chats = Column(Integer, default=0, nullable=False)
    max_chats = Column(Integer, default=5, nullable=False)
    last_seen = Column(DateTime, default=datetime.utcnow, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_human_agents_tenant_email"),
    )

    # Relationships
    tenant = relationship("Tenant", back_populates="human_agents")

    def __repr__(self) -> str:
        return f"<HumanAgent(id={self.id}, tenant_id={self.tenant_id}, status={self.status}, active_chats={self.active_chats})>"

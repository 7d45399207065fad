"""N8N webhook registrations and per-call analytics."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.persistence.database import Base


class WebhookRegistration(Base):
    """A tenant-configured automation endpoint.

    Created and edited by tenant configuration; the delivery engine only
    reads it and bumps the usage counters.
    """

    __tablename__ = "webhook_registrations"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    workflow_name = Column(String(100), nullable=False)  # e.g. "handoff_requested", "booking_request"
    webhook_url = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    auth_token = Column(Text, nullable=True)  # ENCRYPTED ("enc:" prefix)
    is_active = Column(Boolean, default=True, nullable=False)

    # Usage tracking
    last_called_at = Column(DateTime, nullable=True)
    total_calls = Column(Integer, default=0, nullable=False)
    successful_calls = Column(Integer, default=0, nullable=False)
    failed_calls = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "workflow_name", name="uq_webhook_registrations_tenant_workflow"),
    )

    # Relationships
    tenant = relationship("Tenant", back_populates="webhooks")

    def __repr__(self) -> str:
        return f"<WebhookRegistration(id={self.id}, tenant_id={self.tenant_id}, workflow={self.workflow_name}, active={self.is_active})>"


class WebhookCall(Base):
    """Terminal outcome of one top-level webhook delivery (retries included)."""

    __tablename__ = "webhook_calls"

    id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(Integer, ForeignKey("webhook_registrations.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)

    request_payload = Column(JSON, nullable=False)
    response_body = Column(JSON, nullable=True)
    status_code = Column(Integer, nullable=True)
    response_time_ms = Column(Float, nullable=False)
    attempt_count = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_webhook_calls_tenant_created", "tenant_id", "created_at"),
    )

    webhook = relationship("WebhookRegistration")

    def __repr__(self) -> str:
        return f"<WebhookCall(id={self.id}, webhook_id={self.webhook_id}, success={self.success})>"

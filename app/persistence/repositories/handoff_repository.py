"""Handoff (conversation store) repository."""

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.persistence.models.handoff import Handoff, HandoffMessage, HandoffStatus, SenderType
from app.persistence.repositories.base import BaseRepository
from app.persistence.repositories.human_agent_repository import active_chats_update

# Sentinel for "do not check the assigned agent"
ANY_AGENT = object()


class HandoffRepository(BaseRepository[Handoff]):
    """Repository for Handoff entities.

    Status changes go through :meth:`transition`, a compare-and-set on the
    current status. It is the only place that writes ``status``.
    """

    def __init__(self, session: AsyncSession):
        """Initialize handoff repository."""
        super().__init__(Handoff, session)

    async def get_for_update(self, tenant_id: int, handoff_id: int) -> Handoff | None:
        """Get a handoff and lock its row until the transaction ends.

        Appends hold this lock so a concurrent resolve cannot commit between
        the status check and the message insert.
        """
        stmt = (
            select(Handoff)
            .where(Handoff.id == handoff_id, Handoff.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_tenant(
        self,
        tenant_id: int,
        status: HandoffStatus | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Handoff]:
        """List a tenant's handoffs, most recently updated first."""
        stmt = select(Handoff).where(Handoff.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(Handoff.status == status.value)
        stmt = (
            stmt.order_by(Handoff.updated_at.desc(), Handoff.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_stale_pending(self, cutoff: datetime, limit: int = 500) -> list[Handoff]:
        """List unclaimed handoffs requested before ``cutoff`` (all tenants)."""
        stmt = (
            select(Handoff)
            .where(
                Handoff.status == HandoffStatus.PENDING_HANDOFF.value,
                Handoff.requested_at < cutoff,
            )
            .order_by(Handoff.requested_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def transition(
        self,
        tenant_id: int,
        handoff_id: int,
        expected_status: HandoffStatus,
        new_status: HandoffStatus,
        *,
        expected_agent_id: Any = ANY_AGENT,
        values: dict[str, Any] | None = None,
        notice: str | None = None,
        agent_deltas: dict[int, int] | None = None,
    ) -> bool:
        """Atomically move a handoff from ``expected_status`` to ``new_status``.

        The UPDATE only matches while the row still has the expected status
        (and, when given, the expected assigned agent), so of two concurrent
        callers exactly one sees a matched row. On success the optional system
        notice and agent counter changes are written in the same transaction.

        Args:
            tenant_id: Tenant ID
            handoff_id: Handoff ID
            expected_status: Status the row must currently have
            new_status: Status to set
            expected_agent_id: Assigned agent the row must currently have
            values: Extra columns to set alongside the status
            notice: Content of a system message to append
            agent_deltas: active_chats adjustments keyed by agent id

        Returns:
            True if this caller won the compare-and-set
        """
        now = datetime.utcnow()
        stmt = (
            update(Handoff)
            .where(
                Handoff.id == handoff_id,
                Handoff.tenant_id == tenant_id,
                Handoff.status == expected_status.value,
            )
            .values(status=new_status.value, updated_at=now, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        if expected_agent_id is not ANY_AGENT:
            stmt = stmt.where(Handoff.assigned_agent_id == expected_agent_id)

        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            # Nothing was written; end the transaction without expiring loaded rows
            await self.session.commit()
            return False

        if notice:
            self.session.add(
                HandoffMessage(
                    handoff_id=handoff_id,
                    sender_type=SenderType.SYSTEM.value,
                    content=notice,
                    created_at=now,
                )
            )
        for agent_id, delta in (agent_deltas or {}).items():
            if delta:
                await self.session.execute(active_chats_update(agent_id, delta))

        await self.session.commit()
        return True


class HandoffMessageRepository(BaseRepository[HandoffMessage]):
    """Repository for HandoffMessage entities (append-only)."""

    def __init__(self, session: AsyncSession):
        """Initialize handoff message repository."""
        super().__init__(HandoffMessage, session)

    async def append(
        self,
        handoff_id: int,
        sender_type: SenderType,
        content: str,
        sender_id: int | None = None,
    ) -> HandoffMessage:
        """Insert a message and commit the current transaction."""
        message = HandoffMessage(
            handoff_id=handoff_id,
            sender_type=sender_type.value,
            sender_id=sender_id,
            content=content,
            created_at=datetime.utcnow(),
        )
        self.session.add(message)
        await self.session.commit()
        await self.session.refresh(message)
        return message

    async def list_for_handoff(self, handoff_id: int) -> list[HandoffMessage]:
        """List messages oldest first."""
        stmt = (
            select(HandoffMessage)
            .where(HandoffMessage.handoff_id == handoff_id)
            .order_by(HandoffMessage.created_at.asc(), HandoffMessage.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

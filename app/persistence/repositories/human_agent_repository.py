"""Human agent repository."""

from datetime import datetime

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.persistence.models.human_agent import AgentStatus, HumanAgent
from app.persistence.repositories.base import BaseRepository


def active_chats_update(agent_id: int, delta: int):
    """Build an atomic ``active_chats += delta`` statement clamped at zero."""
    new_value = HumanAgent.active_chats + delta
    return (
        update(HumanAgent)
        .where(HumanAgent.id == agent_id)
        .values(active_chats=case((new_value < 0, 0), else_=new_value))
        .execution_options(synchronize_session=False)
    )


class HumanAgentRepository(BaseRepository[HumanAgent]):
    """Repository for HumanAgent entities."""

    def __init__(self, session: AsyncSession):
        """Initialize human agent repository."""
        super().__init__(HumanAgent, session)

    async def get_by_email(self, tenant_id: int, email: str) -> HumanAgent | None:
        """Get an agent by email within a tenant."""
        stmt = select(HumanAgent).where(
            HumanAgent.tenant_id == tenant_id,
            HumanAgent.email == email,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: int) -> list[HumanAgent]:
        stmt = (
            select(HumanAgent)
            .where(HumanAgent.tenant_id == tenant_id)
            .order_by(HumanAgent.name)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_available(self, tenant_id: int) -> list[HumanAgent]:
        """List agents who are available and below their chat limit.

        Args:
            tenant_id: Tenant ID

        Returns:
            Agents ordered by current load, least busy first
        """
        stmt = (
            select(HumanAgent)
            .where(
                HumanAgent.tenant_id == tenant_id,
                HumanAgent.status == AgentStatus.AVAILABLE.value,
                HumanAgent.active_chats < HumanAgent.max_chats,
            )
            .order_by(HumanAgent.active_chats.asc(), HumanAgent.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_status(
        self, tenant_id: int, agent_id: int, status: AgentStatus
    ) -> HumanAgent | None:
        """Change an agent's availability and touch ``last_seen``."""
        agent = await self.get_by_id(tenant_id, agent_id)
        if agent is None:
            return None
        agent.status = status.value
        agent.last_seen = datetime.utcnow()
        await self.session.commit()
        await self.session.refresh(agent)
        return agent

    async def record_heartbeat(self, tenant_id: int, email: str) -> HumanAgent | None:
        """Touch ``last_seen`` for the agent behind a dashboard session and mark it available.

        Args:
            tenant_id: Tenant ID
            email: Email of the logged-in dashboard user

        Returns:
            The agent, or None if the user has no agent profile
        """
        agent = await self.get_by_email(tenant_id, email)
        if agent is None:
            return None
        agent.status = AgentStatus.AVAILABLE.value
        agent.last_seen = datetime.utcnow()
        await self.session.commit()
        await self.session.refresh(agent)
        return agent

    async def mark_stale_offline(self, cutoff: datetime) -> int:
        """Take available agents offline when their last heartbeat is older than ``cutoff``.

        Runs across all tenants as a single UPDATE and returns the number of
        agents changed.
        """
        stmt = (
            update(HumanAgent)
            .where(
                HumanAgent.status == AgentStatus.AVAILABLE.value,
                HumanAgent.last_seen < cutoff,
            )
            .values(status=AgentStatus.OFFLINE.value)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

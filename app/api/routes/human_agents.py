"""Human agent routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, require_tenant_context
from app.api.schemas.handoff import (
    HumanAgentCreate,
    HumanAgentResponse,
    HumanAgentStatusUpdate,
)
from app.persistence.database import get_db
from app.persistence.models.tenant import User
from app.persistence.repositories.human_agent_repository import HumanAgentRepository

router = APIRouter()


@router.get("", response_model=list[HumanAgentResponse])
async def list_human_agents(
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[HumanAgentResponse]:
    agents = await HumanAgentRepository(db).list_for_tenant(tenant_id)
    return [HumanAgentResponse.model_validate(agent) for agent in agents]


@router.get("/available", response_model=list[HumanAgentResponse])
async def list_available_agents(
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[HumanAgentResponse]:
    """Agents who are available and below their chat limit, least busy first."""
    agents = await HumanAgentRepository(db).list_available(tenant_id)
    return [HumanAgentResponse.model_validate(agent) for agent in agents]


@router.post("", response_model=HumanAgentResponse, status_code=status.HTTP_201_CREATED)
async def create_human_agent(
    agent_data: HumanAgentCreate,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HumanAgentResponse:
    """Create a human agent profile for the tenant."""
    agent_repo = HumanAgentRepository(db)
    try:
        agent = await agent_repo.create(
            tenant_id,
            name=agent_data.name,
            email=agent_data.email,
            max_chats=agent_data.max_chats,
            status=agent_data.status.value,
        )
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An agent with this email already exists",
        )
    return HumanAgentResponse.model_validate(agent)


@router.put("/{agent_id}/status", response_model=HumanAgentResponse)
async def update_agent_status(
    agent_id: int,
    status_data: HumanAgentStatusUpdate,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HumanAgentResponse:
    agent = await HumanAgentRepository(db).set_status(tenant_id, agent_id, status_data.status)
    if agent is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Human agent not found",
        )
    return HumanAgentResponse.model_validate(agent)


@router.post("/heartbeat", response_model=HumanAgentResponse)
async def agent_heartbeat(
    current_user: Annotated[User, Depends(get_current_user)],
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HumanAgentResponse:
    """Keep the logged-in user's agent profile available.

    The dashboard calls this periodically; agents that stop sending it are
    taken offline by the agent presence worker.
    """
    agent = await HumanAgentRepository(db).record_heartbeat(tenant_id, current_user.email)
    if agent is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No human agent profile for {current_user.email}",
        )
    return HumanAgentResponse.model_validate(agent)

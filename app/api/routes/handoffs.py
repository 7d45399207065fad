"""Handoff routes: conversation lifecycle and messages for the dashboard."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_handoff_service, require_tenant_context
from app.api.schemas.handoff import (
    HandoffClaim,
    HandoffCreate,
    HandoffReassign,
    HandoffRequest,
    HandoffResolve,
    HandoffResponse,
    MessageCreate,
    MessageResponse,
)
from app.domain.errors import AgentNotFoundError, HandoffError
from app.domain.services.handoff_service import HandoffService
from app.persistence.database import get_db
from app.persistence.models.handoff import HandoffStatus
from app.persistence.models.tenant import User
from app.persistence.repositories.human_agent_repository import HumanAgentRepository

router = APIRouter()


def _http_error(error: HandoffError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


@router.post("", response_model=HandoffResponse, status_code=status.HTTP_201_CREATED)
async def create_handoff(
    handoff_data: HandoffCreate,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[HandoffService, Depends(get_handoff_service)],
) -> HandoffResponse:
    """Start a conversation in status ``ai``."""
    handoff = await service.create_conversation(tenant_id, handoff_data.chat_id, handoff_data.metadata)
    return HandoffResponse.model_validate(handoff)


@router.get("", response_model=list[HandoffResponse])
async def list_handoffs(
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[HandoffService, Depends(get_handoff_service)],
    status_filter: Annotated[HandoffStatus | None, Query(alias="status")] = None,
    skip: int = 0,
    limit: int = 100,
) -> list[HandoffResponse]:
    """List the tenant's conversations, optionally filtered by status.

    Args:
        tenant_id: Tenant ID
        service: Handoff service
        status_filter: Only conversations in this status (query ``status``)
        skip: Number of records to skip
        limit: Maximum number of records to return
    """
    handoffs = await service.list_conversations_for_tenant(
        tenant_id, status_filter, skip=skip, limit=limit
    )
    return [HandoffResponse.model_validate(handoff) for handoff in handoffs]


@router.get("/{handoff_id}", response_model=HandoffResponse)
async def get_handoff(
    handoff_id: int,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[HandoffService, Depends(get_handoff_service)],
) -> HandoffResponse:
    try:
        handoff = await service.get_conversation(tenant_id, handoff_id)
    except HandoffError as e:
        raise _http_error(e)
    return HandoffResponse.model_validate(handoff)


@router.post("/{handoff_id}/request", response_model=HandoffResponse)
async def request_handoff(
    handoff_id: int,
    request_data: HandoffRequest,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[HandoffService, Depends(get_handoff_service)],
) -> HandoffResponse:
    """Escalate to the human queue. Repeated requests return the pending record."""
    try:
        handoff = await service.request_handoff(
            tenant_id,
            handoff_id,
            request_data.reason,
            user_email=request_data.user_email,
            user_message=request_data.user_message,
        )
    except HandoffError as e:
        raise _http_error(e)
    return HandoffResponse.model_validate(handoff)


@router.post("/{handoff_id}/claim", response_model=HandoffResponse)
async def claim_handoff(
    handoff_id: int,
    claim_data: HandoffClaim,
    current_user: Annotated[User, Depends(get_current_user)],
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[HandoffService, Depends(get_handoff_service)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HandoffResponse:
    """Claim a pending conversation.

    Without an explicit ``agent_id`` the acting agent is the human agent
    whose email matches the logged-in user.
    """
    try:
        agent_id = claim_data.agent_id
        if agent_id is None:
            agent = await HumanAgentRepository(db).get_by_email(tenant_id, current_user.email)
            if agent is None:
                raise AgentNotFoundError(f"No human agent profile for {current_user.email}")
            agent_id = agent.id
        handoff = await service.claim_handoff(tenant_id, handoff_id, agent_id)
    except HandoffError as e:
        raise _http_error(e)
    return HandoffResponse.model_validate(handoff)


@router.post("/{handoff_id}/reassign", response_model=HandoffResponse)
async def reassign_handoff(
    handoff_id: int,
    reassign_data: HandoffReassign,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[HandoffService, Depends(get_handoff_service)],
) -> HandoffResponse:
    try:
        handoff = await service.reassign_handoff(tenant_id, handoff_id, reassign_data.agent_id)
    except HandoffError as e:
        raise _http_error(e)
    return HandoffResponse.model_validate(handoff)


@router.post("/{handoff_id}/resolve", response_model=HandoffResponse)
async def resolve_handoff(
    handoff_id: int,
    resolve_data: HandoffResolve,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[HandoffService, Depends(get_handoff_service)],
) -> HandoffResponse:
    try:
        handoff = await service.resolve_conversation(
            tenant_id,
            handoff_id,
            reason=resolve_data.reason,
            agent_id=resolve_data.agent_id,
        )
    except HandoffError as e:
        raise _http_error(e)
    return HandoffResponse.model_validate(handoff)


@router.get("/{handoff_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    handoff_id: int,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[HandoffService, Depends(get_handoff_service)],
) -> list[MessageResponse]:
    """List messages oldest first."""
    try:
        messages = await service.list_messages(tenant_id, handoff_id)
    except HandoffError as e:
        raise _http_error(e)
    return [MessageResponse.model_validate(message) for message in messages]


@router.post("/{handoff_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def add_message(
    handoff_id: int,
    message_data: MessageCreate,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[HandoffService, Depends(get_handoff_service)],
) -> MessageResponse:
    """Append a message; rejected with 409 once the conversation is closed."""
    try:
        message = await service.append_message(
            tenant_id,
            handoff_id,
            message_data.sender_type,
            message_data.content,
            sender_id=message_data.sender_id,
        )
    except HandoffError as e:
        raise _http_error(e)
    return MessageResponse.model_validate(message)

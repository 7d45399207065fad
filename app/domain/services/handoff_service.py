"""Handoff state machine: moves a conversation between the AI and human agents.

Statuses only move forward::

    ai -> pending_handoff -> with_human -> resolved
    ai -> resolved

Every status write is a compare-and-set in ``HandoffRepository.transition``.
Broadcasts, webhook notifications and provider session cleanup run as
detached tasks and never fail the operation that scheduled them.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.background import BackgroundTaskRunner
from app.domain.errors import (
    AgentNotFoundError,
    AlreadyClaimedError,
    ConversationResolvedError,
    HandoffNotFoundError,
    InvalidStateError,
)
from app.domain.models.handoff_context import (
    ConversationTurn,
    HandoffMetadata,
    dump_history,
    load_metadata,
)
from app.domain.services.webhook_service import WebhookDeliveryService
from app.infrastructure.notifications import DashboardNotifier
from app.infrastructure.session_cleanup import NoopSessionCleanup, SessionCleanup
from app.persistence.models.handoff import (
    Handoff,
    HandoffMessage,
    HandoffStatus,
    ResolutionReason,
    SenderType,
)
from app.persistence.models.human_agent import HumanAgent
from app.persistence.repositories.handoff_repository import (
    ANY_AGENT,
    HandoffMessageRepository,
    HandoffRepository,
)
from app.persistence.repositories.human_agent_repository import HumanAgentRepository
from app.settings import settings

logger = logging.getLogger(__name__)

# Dashboard events
HANDOFF_CREATED = "handoff:created"
HANDOFF_REQUESTED = "handoff:requested"
HANDOFF_CLAIMED = "handoff:claimed"
HANDOFF_REASSIGNED = "handoff:reassigned"
HANDOFF_RESOLVED = "handoff:resolved"
MESSAGE_CREATED = "message:created"

# A resolve can lose at most this many races, since status only moves forward
_MAX_RESOLVE_ATTEMPTS = 3


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_handoff(handoff: Handoff) -> dict[str, Any]:
    """Plain-data view of a handoff for broadcasts and webhook payloads."""
    return {
        "id": handoff.id,
        "tenant_id": handoff.tenant_id,
        "chat_id": handoff.chat_id,
        "status": handoff.status,
        "assigned_agent_id": handoff.assigned_agent_id,
        "requested_at": _iso(handoff.requested_at),
        "picked_up_at": _iso(handoff.picked_up_at),
        "resolved_at": _iso(handoff.resolved_at),
        "resolution_reason": handoff.resolution_reason,
        "resolved_by_agent_id": handoff.resolved_by_agent_id,
        "last_user_message": handoff.last_user_message,
        "metadata": handoff.handoff_metadata,
        "user_email": handoff.user_email,
        "user_message": handoff.user_message,
    }


def serialize_message(message: HandoffMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "handoff_id": message.handoff_id,
        "sender_type": message.sender_type,
        "sender_id": message.sender_id,
        "content": message.content,
        "created_at": _iso(message.created_at),
    }


def resolution_notice(reason: ResolutionReason, agent: HumanAgent | None = None) -> str:
    """System message appended when a conversation is closed."""
    if reason is ResolutionReason.USER_ENDED:
        return "User ended the chat"
    if reason is ResolutionReason.TIMEOUT:
        return "Conversation closed: no agent picked it up in time"
    if reason is ResolutionReason.AGENT_RESOLVED and agent is not None:
        return f"{agent.name} resolved the conversation"
    return "Conversation ended"


class HandoffService:
    """Service for the AI-to-human handoff lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        notifier: DashboardNotifier,
        background: BackgroundTaskRunner,
        webhook_service: WebhookDeliveryService | None = None,
        session_cleanup: SessionCleanup | None = None,
    ) -> None:
        """Initialize handoff service.

        Args:
            session: Database session
            notifier: Dashboard broadcast sink
            background: Runner for detached side effects
            webhook_service: Delivery engine for the "handoff requested" workflow
            session_cleanup: Ends provider-side sessions after resolve
        """
        self.session = session
        self.notifier = notifier
        self.background = background
        self.webhook_service = webhook_service
        self.session_cleanup = session_cleanup or NoopSessionCleanup()
        self.handoff_repo = HandoffRepository(session)
        self.message_repo = HandoffMessageRepository(session)
        self.agent_repo = HumanAgentRepository(session)

    # Reads

    async def get_conversation(self, tenant_id: int, handoff_id: int) -> Handoff:
        """Get a conversation or raise HandoffNotFoundError."""
        handoff = await self.handoff_repo.get_by_id(tenant_id, handoff_id)
        if handoff is None:
            raise HandoffNotFoundError(f"Conversation {handoff_id} not found")
        return handoff

    async def list_conversations_for_tenant(
        self,
        tenant_id: int,
        status: HandoffStatus | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Handoff]:
        return await self.handoff_repo.list_for_tenant(tenant_id, status, skip, limit)

    async def list_messages(self, tenant_id: int, handoff_id: int) -> list[HandoffMessage]:
        """List a conversation's messages oldest first."""
        await self.get_conversation(tenant_id, handoff_id)
        return await self.message_repo.list_for_handoff(handoff_id)

    # Transitions

    async def create_conversation(
        self,
        tenant_id: int,
        chat_id: str,
        metadata: HandoffMetadata | None = None,
    ) -> Handoff:
        """Start a conversation in status ``ai``.

        Args:
            tenant_id: Tenant ID
            chat_id: Channel-level chat reference (widget session, provider id)
            metadata: Channel correlation data

        Returns:
            Created Handoff
        """
        metadata = metadata or HandoffMetadata()
        handoff = await self.handoff_repo.create(
            tenant_id,
            chat_id=chat_id,
            channel=metadata.channel,
            status=HandoffStatus.AI.value,
            handoff_metadata=metadata.model_dump(mode="json"),
        )
        logger.info(
            "Conversation created",
            extra={"tenant_id": tenant_id, "handoff_id": handoff.id, "channel": metadata.channel},
        )
        self._broadcast(tenant_id, HANDOFF_CREATED, serialize_handoff(handoff))
        return handoff

    async def request_handoff(
        self,
        tenant_id: int,
        handoff_id: int,
        reason: str,
        *,
        user_email: str | None = None,
        user_message: str | None = None,
    ) -> Handoff:
        """Escalate a conversation from the AI to the human queue.

        A second request while already ``pending_handoff`` is a no-op that
        returns the stored record unchanged (duplicate escalation clicks).

        Args:
            tenant_id: Tenant ID
            handoff_id: Handoff ID
            reason: Why the user or the AI path asked for a human
            user_email: After-hours contact email
            user_message: After-hours message left for the team

        Returns:
            Handoff in status ``pending_handoff``

        Raises:
            HandoffNotFoundError: Conversation does not exist
            InvalidStateError: Conversation is ``with_human`` or ``resolved``
        """
        handoff = await self.get_conversation(tenant_id, handoff_id)
        if handoff.status == HandoffStatus.PENDING_HANDOFF.value:
            return handoff
        if handoff.status != HandoffStatus.AI.value:
            raise InvalidStateError(f"Cannot request a handoff while conversation is {handoff.status}")

        messages = await self.message_repo.list_for_handoff(handoff_id)
        history = [
            ConversationTurn(role=message.sender_type, content=message.content, created_at=message.created_at)
            for message in messages
            if message.sender_type in (SenderType.USER.value, SenderType.AI.value)
        ]
        last_user_message = next(
            (m.content for m in reversed(messages) if m.sender_type == SenderType.USER.value),
            None,
        )
        metadata = load_metadata(handoff.handoff_metadata).model_copy(update={"handoff_reason": reason})

        values: dict[str, Any] = {
            "requested_at": datetime.utcnow(),
            "conversation_history": dump_history(history),
            "last_user_message": last_user_message,
            "handoff_metadata": metadata.model_dump(mode="json"),
        }
        if user_email is not None:
            values["user_email"] = user_email
        if user_message is not None:
            values["user_message"] = user_message

        won = await self.handoff_repo.transition(
            tenant_id,
            handoff_id,
            HandoffStatus.AI,
            HandoffStatus.PENDING_HANDOFF,
            values=values,
        )
        handoff = await self.get_conversation(tenant_id, handoff_id)
        if not won:
            if handoff.status == HandoffStatus.PENDING_HANDOFF.value:
                return handoff
            raise InvalidStateError(f"Cannot request a handoff while conversation is {handoff.status}")

        summary = self.generate_conversation_summary(messages)
        logger.info(
            "Handoff requested",
            extra={"tenant_id": tenant_id, "handoff_id": handoff_id, "reason": reason},
        )

        data = serialize_handoff(handoff)
        data["summary"] = summary
        self._broadcast(tenant_id, HANDOFF_REQUESTED, data)

        if self.webhook_service is not None:
            payload = {
                "event": settings.handoff_requested_workflow,
                "tenant_id": tenant_id,
                "handoff_id": handoff.id,
                "chat_id": handoff.chat_id,
                "reason": reason,
                "requested_at": _iso(handoff.requested_at),
                "last_user_message": handoff.last_user_message,
                "user_email": handoff.user_email,
                "user_message": handoff.user_message,
                "summary": summary,
                "metadata": handoff.handoff_metadata,
            }
            self.background.spawn(
                self._notify_handoff_requested(tenant_id, handoff.id, payload),
                name=f"webhook:handoff_requested:{handoff.id}",
            )
        return handoff

    async def claim_handoff(self, tenant_id: int, handoff_id: int, agent_id: int) -> Handoff:
        """Assign a pending conversation to an agent.

        Of two concurrent claims exactly one wins; the other raises
        AlreadyClaimedError.

        Raises:
            AgentNotFoundError: Agent does not exist for the tenant
            AlreadyClaimedError: Another agent owns the conversation
            InvalidStateError: Conversation is not ``pending_handoff``
        """
        agent = await self._get_agent(tenant_id, agent_id)
        handoff = await self.get_conversation(tenant_id, handoff_id)
        self._check_claimable(handoff)

        won = await self.handoff_repo.transition(
            tenant_id,
            handoff_id,
            HandoffStatus.PENDING_HANDOFF,
            HandoffStatus.WITH_HUMAN,
            values={"assigned_agent_id": agent.id, "picked_up_at": datetime.utcnow()},
            notice=f"{agent.name} joined the conversation",
            agent_deltas={agent.id: 1},
        )
        handoff = await self.get_conversation(tenant_id, handoff_id)
        if not won:
            logger.info(
                "Claim lost race",
                extra={"tenant_id": tenant_id, "handoff_id": handoff_id, "agent_id": agent.id},
            )
            self._check_claimable(handoff)
            raise InvalidStateError()

        logger.info(
            "Handoff claimed",
            extra={"tenant_id": tenant_id, "handoff_id": handoff_id, "agent_id": agent.id},
        )
        data = serialize_handoff(handoff)
        data["agent_name"] = agent.name
        self._broadcast(tenant_id, HANDOFF_CLAIMED, data)
        return handoff

    async def reassign_handoff(self, tenant_id: int, handoff_id: int, agent_id: int) -> Handoff:
        """Move a ``with_human`` conversation to another agent.

        Raises:
            AgentNotFoundError: Agent does not exist for the tenant
            InvalidStateError: Not ``with_human``, or changed concurrently
        """
        agent = await self._get_agent(tenant_id, agent_id)
        handoff = await self.get_conversation(tenant_id, handoff_id)
        if handoff.status != HandoffStatus.WITH_HUMAN.value:
            raise InvalidStateError(f"Cannot reassign a conversation that is {handoff.status}")

        previous_agent_id = handoff.assigned_agent_id
        if previous_agent_id == agent.id:
            return handoff

        deltas = {agent.id: 1}
        if previous_agent_id is not None:
            deltas[previous_agent_id] = -1

        won = await self.handoff_repo.transition(
            tenant_id,
            handoff_id,
            HandoffStatus.WITH_HUMAN,
            HandoffStatus.WITH_HUMAN,
            expected_agent_id=previous_agent_id,
            values={"assigned_agent_id": agent.id},
            agent_deltas=deltas,
        )
        handoff = await self.get_conversation(tenant_id, handoff_id)
        if not won:
            raise InvalidStateError("Conversation was changed by another agent")

        logger.info(
            "Handoff reassigned",
            extra={
                "tenant_id": tenant_id,
                "handoff_id": handoff_id,
                "from_agent_id": previous_agent_id,
                "agent_id": agent.id,
            },
        )
        data = serialize_handoff(handoff)
        data["previous_agent_id"] = previous_agent_id
        data["agent_name"] = agent.name
        self._broadcast(tenant_id, HANDOFF_REASSIGNED, data)
        return handoff

    async def append_message(
        self,
        tenant_id: int,
        handoff_id: int,
        sender_type: SenderType | str,
        content: str,
        sender_id: int | None = None,
    ) -> HandoffMessage:
        """Append a message to an open conversation.

        Only persists and broadcasts; generating AI replies is the caller's
        job.

        Raises:
            HandoffNotFoundError: Conversation does not exist
            ConversationResolvedError: Conversation is resolved
        """
        if not isinstance(sender_type, SenderType):
            sender_type = SenderType.parse(sender_type)

        handoff = await self.handoff_repo.get_for_update(tenant_id, handoff_id)
        if handoff is None or handoff.status == HandoffStatus.RESOLVED.value:
            # Release the row lock before surfacing the error
            await self.session.commit()
            if handoff is None:
                raise HandoffNotFoundError(f"Conversation {handoff_id} not found")
            raise ConversationResolvedError()

        message = await self.message_repo.append(handoff_id, sender_type, content, sender_id)
        self._broadcast(tenant_id, MESSAGE_CREATED, serialize_message(message))
        return message

    async def resolve_conversation(
        self,
        tenant_id: int,
        handoff_id: int,
        *,
        reason: ResolutionReason | None = None,
        agent_id: int | None = None,
    ) -> Handoff:
        """Close a conversation.

        Resolving an already resolved conversation returns it unchanged.
        Provider session cleanup runs detached and never fails the resolve.

        Args:
            tenant_id: Tenant ID
            handoff_id: Handoff ID
            reason: Resolution reason; defaults from the current status
            agent_id: Agent closing the conversation, if any

        Returns:
            Resolved Handoff
        """
        agent = await self._get_agent(tenant_id, agent_id) if agent_id is not None else None

        for _ in range(_MAX_RESOLVE_ATTEMPTS):
            handoff = await self.get_conversation(tenant_id, handoff_id)
            if handoff.status == HandoffStatus.RESOLVED.value:
                return handoff

            current = HandoffStatus(handoff.status)
            effective_reason = reason or self._default_reason(current, agent)
            deltas = {}
            expected_agent_id = ANY_AGENT
            if current is HandoffStatus.WITH_HUMAN:
                expected_agent_id = handoff.assigned_agent_id
                if handoff.assigned_agent_id is not None:
                    deltas[handoff.assigned_agent_id] = -1

            won = await self.handoff_repo.transition(
                tenant_id,
                handoff_id,
                current,
                HandoffStatus.RESOLVED,
                expected_agent_id=expected_agent_id,
                values={
                    "resolved_at": datetime.utcnow(),
                    "resolution_reason": effective_reason.value,
                    "resolved_by_agent_id": agent.id if agent else None,
                },
                notice=resolution_notice(effective_reason, agent),
                agent_deltas=deltas,
            )
            if won:
                handoff = await self.get_conversation(tenant_id, handoff_id)
                self._after_resolve(handoff)
                return handoff

        raise InvalidStateError("Conversation kept changing while resolving; retry")

    async def expire_stale_handoffs(
        self,
        now: datetime | None = None,
        timeout_minutes: int | None = None,
    ) -> int:
        """Close unclaimed handoffs that waited longer than the timeout.

        A conversation claimed while the sweep runs is left alone.

        Returns:
            Number of conversations closed
        """
        now = now or datetime.utcnow()
        minutes = timeout_minutes if timeout_minutes is not None else settings.handoff_pending_timeout_minutes
        cutoff = now - timedelta(minutes=minutes)

        expired = 0
        for stale in await self.handoff_repo.list_stale_pending(cutoff):
            won = await self.handoff_repo.transition(
                stale.tenant_id,
                stale.id,
                HandoffStatus.PENDING_HANDOFF,
                HandoffStatus.RESOLVED,
                values={
                    "resolved_at": now,
                    "resolution_reason": ResolutionReason.TIMEOUT.value,
                },
                notice=resolution_notice(ResolutionReason.TIMEOUT),
            )
            if not won:
                continue
            expired += 1
            handoff = await self.get_conversation(stale.tenant_id, stale.id)
            self._after_resolve(handoff)

        if expired:
            logger.info(f"Expired {expired} stale handoffs", extra={"cutoff": cutoff.isoformat()})
        return expired

    @staticmethod
    def generate_conversation_summary(messages: list[HandoffMessage]) -> str:
        """Plain-text summary shown to the agent picking up the chat."""
        if not messages:
            return "New conversation with no messages yet."

        user_messages = [m for m in messages if m.sender_type == SenderType.USER.value]
        ai_messages = [m for m in messages if m.sender_type == SenderType.AI.value]
        latest = user_messages[-1].content if user_messages else "N/A"
        return (
            "Conversation Summary:\n"
            f"- Total messages: {len(messages)}\n"
            f"- User messages: {len(user_messages)}\n"
            f"- Assistant messages: {len(ai_messages)}\n"
            f"- Latest user message: {latest}\n"
            "- Topic: Customer inquiry requiring human assistance"
        )

    # Helpers

    async def _get_agent(self, tenant_id: int, agent_id: int) -> HumanAgent:
        agent = await self.agent_repo.get_by_id(tenant_id, agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Human agent {agent_id} not found")
        return agent

    @staticmethod
    def _check_claimable(handoff: Handoff) -> None:
        if handoff.status == HandoffStatus.WITH_HUMAN.value:
            raise AlreadyClaimedError()
        if handoff.status != HandoffStatus.PENDING_HANDOFF.value:
            raise InvalidStateError(f"Cannot claim a conversation that is {handoff.status}")

    @staticmethod
    def _default_reason(current: HandoffStatus, agent: HumanAgent | None) -> ResolutionReason:
        if agent is not None or current is HandoffStatus.WITH_HUMAN:
            return ResolutionReason.AGENT_RESOLVED
        return ResolutionReason.ENDED_EARLY

    def _after_resolve(self, handoff: Handoff) -> None:
        logger.info(
            "Conversation resolved",
            extra={
                "tenant_id": handoff.tenant_id,
                "handoff_id": handoff.id,
                "reason": handoff.resolution_reason,
            },
        )
        self._broadcast(handoff.tenant_id, HANDOFF_RESOLVED, serialize_handoff(handoff))
        self.background.spawn(
            self._end_provider_session(handoff),
            name=f"session_cleanup:{handoff.id}",
        )

    def _broadcast(self, tenant_id: int, event: str, payload: dict[str, Any]) -> None:
        self.background.spawn(
            self.notifier.broadcast_to_tenant(tenant_id, event, payload),
            name=f"broadcast:{event}",
        )

    async def _notify_handoff_requested(
        self, tenant_id: int, handoff_id: int, payload: dict[str, Any]
    ) -> None:
        result = await self.webhook_service.call_webhook_by_name(
            tenant_id, settings.handoff_requested_workflow, payload
        )
        if not result.success:
            logger.warning(
                f"Handoff webhook not delivered: {result.error_message}",
                extra={"tenant_id": tenant_id, "handoff_id": handoff_id},
            )

    async def _end_provider_session(self, handoff: Handoff) -> None:
        try:
            await self.session_cleanup.end_session(handoff)
        except Exception as e:
            logger.warning(
                f"Provider session cleanup failed: {e}",
                extra={"tenant_id": handoff.tenant_id, "handoff_id": handoff.id},
            )

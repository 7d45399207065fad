"""Tests for the handoff state machine."""

import asyncio
import logging
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import update

from app.domain.errors import (
    AgentNotFoundError,
    AlreadyClaimedError,
    ConversationResolvedError,
    HandoffNotFoundError,
    InvalidStateError,
)
from app.domain.models.handoff_context import HandoffMetadata
from app.domain.services.handoff_service import (
    HANDOFF_CLAIMED,
    HANDOFF_CREATED,
    HANDOFF_REQUESTED,
    HANDOFF_RESOLVED,
    MESSAGE_CREATED,
    HandoffService,
)
from app.domain.services.webhook_service import WebhookCallResult
from app.persistence.models.handoff import Handoff, HandoffStatus, ResolutionReason
from app.persistence.repositories.handoff_repository import ANY_AGENT

STATUS_ORDER = [
    HandoffStatus.AI.value,
    HandoffStatus.PENDING_HANDOFF.value,
    HandoffStatus.WITH_HUMAN.value,
    HandoffStatus.RESOLVED.value,
]


@pytest.fixture
def notifier():
    """Create a mock dashboard notifier."""
    notifier = MagicMock()
    notifier.broadcast_to_tenant = AsyncMock(return_value=1)
    return notifier


@pytest.fixture
def service(db_session, notifier, background):
    """Create a handoff service backed by the test database."""
    return HandoffService(db_session, notifier=notifier, background=background)


def broadcast_events(notifier) -> list[str]:
    return [call.args[1] for call in notifier.broadcast_to_tenant.await_args_list]


def broadcast_payload(notifier, event: str) -> dict:
    for call in notifier.broadcast_to_tenant.await_args_list:
        if call.args[1] == event:
            return call.args[2]
    raise AssertionError(f"{event} was not broadcast")


class TestHappyPath:
    """End-to-end lifecycle of a single conversation."""

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, service, tenant, agents, background):
        alice, _ = agents

        handoff = await service.create_conversation(tenant.id, "widget-session-1")
        assert handoff.status == HandoffStatus.AI.value
        assert handoff.assigned_agent_id is None
        assert handoff.requested_at is None

        await service.append_message(tenant.id, handoff.id, "user", "I need help")

        handoff = await service.request_handoff(tenant.id, handoff.id, "user_request")
        assert handoff.status == HandoffStatus.PENDING_HANDOFF.value
        assert handoff.requested_at is not None
        assert handoff.picked_up_at is None

        handoff = await service.claim_handoff(tenant.id, handoff.id, alice.id)
        assert handoff.status == HandoffStatus.WITH_HUMAN.value
        assert handoff.picked_up_at is not None
        assert handoff.assigned_agent_id == alice.id

        await service.append_message(tenant.id, handoff.id, "agent", "How can I help?", sender_id=alice.id)

        handoff = await service.resolve_conversation(tenant.id, handoff.id)
        assert handoff.status == HandoffStatus.RESOLVED.value
        assert handoff.resolved_at is not None
        assert handoff.resolution_reason == ResolutionReason.AGENT_RESOLVED.value

        with pytest.raises(ConversationResolvedError) as exc_info:
            await service.append_message(tenant.id, handoff.id, "user", "hello?")
        assert exc_info.value.message == "this conversation is closed"

    @pytest.mark.asyncio
    async def test_status_only_moves_forward(self, service, tenant, agents):
        alice, _ = agents
        observed = []

        handoff = await service.create_conversation(tenant.id, "chat-1")
        observed.append(handoff.status)
        observed.append((await service.request_handoff(tenant.id, handoff.id, "user_request")).status)
        observed.append((await service.request_handoff(tenant.id, handoff.id, "user_request")).status)
        observed.append((await service.claim_handoff(tenant.id, handoff.id, alice.id)).status)
        with pytest.raises(InvalidStateError):
            await service.request_handoff(tenant.id, handoff.id, "user_request")
        observed.append((await service.get_conversation(tenant.id, handoff.id)).status)
        observed.append((await service.resolve_conversation(tenant.id, handoff.id)).status)
        with pytest.raises(InvalidStateError):
            await service.claim_handoff(tenant.id, handoff.id, alice.id)
        observed.append((await service.get_conversation(tenant.id, handoff.id)).status)

        positions = [STATUS_ORDER.index(status) for status in observed]
        assert positions == sorted(positions)

    @pytest.mark.asyncio
    async def test_broadcasts_each_change(self, service, tenant, agents, notifier, background):
        alice, _ = agents

        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.append_message(tenant.id, handoff.id, "user", "hi")
        await service.request_handoff(tenant.id, handoff.id, "user_request")
        await service.claim_handoff(tenant.id, handoff.id, alice.id)
        await service.resolve_conversation(tenant.id, handoff.id)
        await background.drain()

        assert broadcast_events(notifier) == [
            HANDOFF_CREATED,
            MESSAGE_CREATED,
            HANDOFF_REQUESTED,
            HANDOFF_CLAIMED,
            HANDOFF_RESOLVED,
        ]
        assert all(call.args[0] == tenant.id for call in notifier.broadcast_to_tenant.await_args_list)


class TestRequestHandoff:
    """Tests for escalation to the human queue."""

    @pytest.mark.asyncio
    async def test_duplicate_request_is_noop(self, service, tenant, notifier, background):
        handoff = await service.create_conversation(tenant.id, "chat-1")

        first = await service.request_handoff(tenant.id, handoff.id, "user_request")
        requested_at = first.requested_at
        second = await service.request_handoff(tenant.id, handoff.id, "user_request")
        await background.drain()

        assert second.status == HandoffStatus.PENDING_HANDOFF.value
        assert second.requested_at == requested_at
        assert broadcast_events(notifier).count(HANDOFF_REQUESTED) == 1

    @pytest.mark.asyncio
    async def test_request_snapshots_context(self, service, tenant, notifier, background):
        handoff = await service.create_conversation(
            tenant.id,
            "chat-1",
            HandoffMetadata(channel="whatsapp", external_session_id="wa-123"),
        )
        await service.append_message(tenant.id, handoff.id, "user", "Hi")
        await service.append_message(tenant.id, handoff.id, "assistant", "Hello! How can I help?")
        await service.append_message(tenant.id, handoff.id, "user", "I want a person")

        handoff = await service.request_handoff(
            tenant.id,
            handoff.id,
            "user_request",
            user_email="jane@example.com",
            user_message="Call me back",
        )
        await background.drain()

        assert handoff.last_user_message == "I want a person"
        assert [turn["role"] for turn in handoff.conversation_history] == ["user", "ai", "user"]
        assert all(turn["kind"] == "prior_ai_turn" for turn in handoff.conversation_history)
        assert handoff.handoff_metadata["handoff_reason"] == "user_request"
        assert handoff.handoff_metadata["external_session_id"] == "wa-123"
        assert handoff.user_email == "jane@example.com"
        assert handoff.user_message == "Call me back"

        summary = broadcast_payload(notifier, HANDOFF_REQUESTED)["summary"]
        assert "- Total messages: 3" in summary
        assert "- Assistant messages: 1" in summary
        assert "- Latest user message: I want a person" in summary

    @pytest.mark.asyncio
    async def test_request_from_resolved_fails(self, service, tenant):
        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.resolve_conversation(tenant.id, handoff.id)

        with pytest.raises(InvalidStateError):
            await service.request_handoff(tenant.id, handoff.id, "user_request")

    @pytest.mark.asyncio
    async def test_request_notifies_webhook_in_background(self, db_session, tenant, notifier, background):
        webhook_service = MagicMock()
        webhook_service.call_webhook_by_name = AsyncMock(
            return_value=WebhookCallResult(success=False, attempt_number=3, response_time_ms=10.0, error_message="HTTP 500: Internal Server Error")
        )
        service = HandoffService(
            db_session, notifier=notifier, background=background, webhook_service=webhook_service
        )
        handoff = await service.create_conversation(tenant.id, "chat-1")

        handoff = await service.request_handoff(tenant.id, handoff.id, "ai_failure")
        await background.drain()

        # A failed notification does not affect the transition
        assert handoff.status == HandoffStatus.PENDING_HANDOFF.value
        webhook_service.call_webhook_by_name.assert_awaited_once()
        tenant_id, workflow, payload = webhook_service.call_webhook_by_name.await_args.args
        assert tenant_id == tenant.id
        assert workflow == "handoff_requested"
        assert payload["handoff_id"] == handoff.id
        assert payload["reason"] == "ai_failure"
        assert payload["summary"] == "New conversation with no messages yet."


class TestClaimHandoff:
    """Tests for agents claiming pending conversations."""

    @pytest.mark.asyncio
    async def test_claim_updates_agent_and_adds_notice(self, service, db_session, tenant, agents):
        alice, _ = agents
        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.request_handoff(tenant.id, handoff.id, "user_request")

        await service.claim_handoff(tenant.id, handoff.id, alice.id)

        await db_session.refresh(alice)
        assert alice.active_chats == 1
        messages = await service.list_messages(tenant.id, handoff.id)
        assert messages[-1].sender_type == "system"
        assert messages[-1].content == "Alice joined the conversation"

    @pytest.mark.asyncio
    async def test_second_claim_fails(self, service, db_session, tenant, agents):
        alice, bob = agents
        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.request_handoff(tenant.id, handoff.id, "user_request")
        await service.claim_handoff(tenant.id, handoff.id, alice.id)

        with pytest.raises(AlreadyClaimedError) as exc_info:
            await service.claim_handoff(tenant.id, handoff.id, bob.id)

        assert exc_info.value.message == "conversation already claimed by another agent"
        handoff = await service.get_conversation(tenant.id, handoff.id)
        assert handoff.assigned_agent_id == alice.id
        await db_session.refresh(bob)
        assert bob.active_chats == 0

    @pytest.mark.asyncio
    async def test_claim_requires_pending(self, service, tenant, agents):
        alice, _ = agents
        handoff = await service.create_conversation(tenant.id, "chat-1")

        with pytest.raises(InvalidStateError) as exc_info:
            await service.claim_handoff(tenant.id, handoff.id, alice.id)
        assert not isinstance(exc_info.value, AlreadyClaimedError)

    @pytest.mark.asyncio
    async def test_claim_with_unknown_agent(self, service, tenant):
        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.request_handoff(tenant.id, handoff.id, "user_request")

        with pytest.raises(AgentNotFoundError):
            await service.claim_handoff(tenant.id, handoff.id, 9999)


class InMemoryHandoffRepository:
    """Conversation store whose compare-and-set yields before writing.

    Both claimers read ``pending_handoff`` before either writes, which is
    the interleaving a real race produces.
    """

    def __init__(self, handoff):
        self.handoff = handoff
        self.notices = []

    async def get_by_id(self, tenant_id, handoff_id):
        await asyncio.sleep(0)
        if self.handoff.tenant_id == tenant_id and self.handoff.id == handoff_id:
            return self.handoff
        return None

    async def transition(
        self,
        tenant_id,
        handoff_id,
        expected_status,
        new_status,
        *,
        expected_agent_id=ANY_AGENT,
        values=None,
        notice=None,
        agent_deltas=None,
    ):
        await asyncio.sleep(0)
        if self.handoff.status != expected_status.value:
            return False
        if expected_agent_id is not ANY_AGENT and self.handoff.assigned_agent_id != expected_agent_id:
            return False
        self.handoff.status = new_status.value
        for key, value in (values or {}).items():
            setattr(self.handoff, key, value)
        self.notices.append(notice)
        return True


class InMemoryAgentRepository:
    def __init__(self, *agents):
        self.agents = {agent.id: agent for agent in agents}

    async def get_by_id(self, tenant_id, agent_id):
        await asyncio.sleep(0)
        return self.agents.get(agent_id)


@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner(notifier, background):
    """Two agents claiming at once: exactly one wins, the other sees AlreadyClaimedError."""
    pending = SimpleNamespace(
        id=10,
        tenant_id=1,
        chat_id="chat-race",
        status=HandoffStatus.PENDING_HANDOFF.value,
        assigned_agent_id=None,
        requested_at=datetime.utcnow(),
        picked_up_at=None,
        resolved_at=None,
        resolution_reason=None,
        resolved_by_agent_id=None,
        last_user_message=None,
        handoff_metadata={},
        user_email=None,
        user_message=None,
    )
    handoff_repo = InMemoryHandoffRepository(pending)
    service = HandoffService(MagicMock(), notifier=notifier, background=background)
    service.handoff_repo = handoff_repo
    service.agent_repo = InMemoryAgentRepository(
        SimpleNamespace(id=1, name="Alice"),
        SimpleNamespace(id=2, name="Bob"),
    )

    results = await asyncio.gather(
        service.claim_handoff(1, 10, 1),
        service.claim_handoff(1, 10, 2),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyClaimedError)
    assert pending.status == HandoffStatus.WITH_HUMAN.value
    assert pending.assigned_agent_id in (1, 2)
    assert len(handoff_repo.notices) == 1


@pytest.mark.asyncio
async def test_concurrent_claims_on_separate_sessions(session_factory, service, tenant, agents, notifier, background):
    """The SQL compare-and-set lets exactly one of two sessions claim."""
    alice, bob = agents
    handoff = await service.create_conversation(tenant.id, "chat-race")
    await service.request_handoff(tenant.id, handoff.id, "user_request")

    async def claim(agent_id):
        async with session_factory() as session:
            claimer = HandoffService(session, notifier=notifier, background=background)
            return await claimer.claim_handoff(tenant.id, handoff.id, agent_id)

    results = await asyncio.gather(claim(alice.id), claim(bob.id), return_exceptions=True)

    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyClaimedError)

    async with session_factory() as session:
        reader = HandoffService(session, notifier=notifier, background=background)
        stored = await reader.get_conversation(tenant.id, handoff.id)
        assert stored.status == HandoffStatus.WITH_HUMAN.value
        assert stored.assigned_agent_id == winners[0].assigned_agent_id
        messages = await reader.list_messages(tenant.id, handoff.id)
        assert [m.content for m in messages if m.sender_type == "system"] == [
            f"{'Alice' if stored.assigned_agent_id == alice.id else 'Bob'} joined the conversation"
        ]


class TestReassignHandoff:
    """Tests for moving a live conversation between agents."""

    @pytest.mark.asyncio
    async def test_reassign_moves_counters(self, service, db_session, tenant, agents, notifier, background):
        alice, bob = agents
        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.request_handoff(tenant.id, handoff.id, "user_request")
        await service.claim_handoff(tenant.id, handoff.id, alice.id)

        handoff = await service.reassign_handoff(tenant.id, handoff.id, bob.id)
        await background.drain()

        assert handoff.status == HandoffStatus.WITH_HUMAN.value
        assert handoff.assigned_agent_id == bob.id
        await db_session.refresh(alice)
        await db_session.refresh(bob)
        assert alice.active_chats == 0
        assert bob.active_chats == 1
        assert broadcast_payload(notifier, "handoff:reassigned")["previous_agent_id"] == alice.id

    @pytest.mark.asyncio
    async def test_reassign_requires_with_human(self, service, tenant, agents):
        _, bob = agents
        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.request_handoff(tenant.id, handoff.id, "user_request")

        with pytest.raises(InvalidStateError):
            await service.reassign_handoff(tenant.id, handoff.id, bob.id)


class TestResolveConversation:
    """Tests for closing conversations."""

    @pytest.mark.asyncio
    async def test_resolve_releases_agent(self, service, db_session, tenant, agents):
        alice, _ = agents
        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.request_handoff(tenant.id, handoff.id, "user_request")
        await service.claim_handoff(tenant.id, handoff.id, alice.id)

        handoff = await service.resolve_conversation(tenant.id, handoff.id, agent_id=alice.id)

        assert handoff.resolved_by_agent_id == alice.id
        await db_session.refresh(alice)
        assert alice.active_chats == 0
        messages = await service.list_messages(tenant.id, handoff.id)
        assert messages[-1].content == "Alice resolved the conversation"

    @pytest.mark.asyncio
    async def test_resolve_twice_is_noop(self, service, tenant):
        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.request_handoff(tenant.id, handoff.id, "user_request")

        first = await service.resolve_conversation(tenant.id, handoff.id, reason=ResolutionReason.USER_ENDED)
        resolved_at = first.resolved_at
        second = await service.resolve_conversation(tenant.id, handoff.id)

        assert second.resolved_at == resolved_at
        assert second.resolution_reason == ResolutionReason.USER_ENDED.value
        messages = await service.list_messages(tenant.id, handoff.id)
        assert [m.content for m in messages] == ["User ended the chat"]

    @pytest.mark.asyncio
    async def test_resolve_from_ai_ends_early(self, service, tenant):
        handoff = await service.create_conversation(tenant.id, "chat-1")

        handoff = await service.resolve_conversation(tenant.id, handoff.id)

        assert handoff.status == HandoffStatus.RESOLVED.value
        assert handoff.resolution_reason == ResolutionReason.ENDED_EARLY.value
        assert handoff.picked_up_at is None
        assert handoff.requested_at is None

    @pytest.mark.asyncio
    async def test_session_cleanup_failure_is_logged(self, db_session, tenant, notifier, background, caplog):
        cleanup = MagicMock()
        cleanup.end_session = AsyncMock(side_effect=RuntimeError("provider down"))
        service = HandoffService(
            db_session, notifier=notifier, background=background, session_cleanup=cleanup
        )
        handoff = await service.create_conversation(tenant.id, "chat-1")

        with caplog.at_level(logging.WARNING):
            handoff = await service.resolve_conversation(tenant.id, handoff.id)
            await background.drain()

        assert handoff.status == HandoffStatus.RESOLVED.value
        cleanup.end_session.assert_awaited_once()
        assert any("Provider session cleanup failed" in r.getMessage() for r in caplog.records)


class TestMessages:
    """Tests for the append-only message log."""

    @pytest.mark.asyncio
    async def test_messages_are_ordered(self, service, tenant):
        handoff = await service.create_conversation(tenant.id, "chat-1")
        for index in range(5):
            await service.append_message(tenant.id, handoff.id, "user", f"message {index}")

        messages = await service.list_messages(tenant.id, handoff.id)

        assert [m.content for m in messages] == [f"message {i}" for i in range(5)]
        created = [m.created_at for m in messages]
        assert created == sorted(created)

    @pytest.mark.asyncio
    async def test_assistant_alias_is_stored_as_ai(self, service, tenant):
        handoff = await service.create_conversation(tenant.id, "chat-1")

        message = await service.append_message(tenant.id, handoff.id, "assistant", "Hello")

        assert message.sender_type == "ai"

    @pytest.mark.asyncio
    async def test_resolved_conversation_rejects_messages(self, service, tenant):
        handoff = await service.create_conversation(tenant.id, "chat-1")
        await service.append_message(tenant.id, handoff.id, "user", "bye")
        await service.resolve_conversation(tenant.id, handoff.id, reason=ResolutionReason.USER_ENDED)

        with pytest.raises(ConversationResolvedError):
            await service.append_message(tenant.id, handoff.id, "user", "one more thing")

        messages = await service.list_messages(tenant.id, handoff.id)
        assert [m.content for m in messages] == ["bye", "User ended the chat"]

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_see_conversation(self, service, tenant, other_tenant):
        handoff = await service.create_conversation(tenant.id, "chat-1")

        with pytest.raises(HandoffNotFoundError):
            await service.get_conversation(other_tenant.id, handoff.id)
        with pytest.raises(HandoffNotFoundError):
            await service.append_message(other_tenant.id, handoff.id, "user", "hi")
        assert await service.list_conversations_for_tenant(other_tenant.id) == []


class TestExpireStaleHandoffs:
    """Tests for the pending timeout sweep."""

    @pytest.mark.asyncio
    async def test_expires_only_old_pending(self, service, db_session, tenant, agents):
        alice, _ = agents
        now = datetime.utcnow()
        stale = await service.create_conversation(tenant.id, "stale")
        fresh = await service.create_conversation(tenant.id, "fresh")
        claimed = await service.create_conversation(tenant.id, "claimed")
        for handoff in (stale, fresh, claimed):
            await service.request_handoff(tenant.id, handoff.id, "user_request")
        await service.claim_handoff(tenant.id, claimed.id, alice.id)

        for handoff_id in (stale.id, claimed.id):
            await db_session.execute(
                update(Handoff)
                .where(Handoff.id == handoff_id)
                .values(requested_at=now - timedelta(hours=2))
            )
        await db_session.commit()

        expired = await service.expire_stale_handoffs(now=now, timeout_minutes=60)

        assert expired == 1
        stale = await service.get_conversation(tenant.id, stale.id)
        assert stale.status == HandoffStatus.RESOLVED.value
        assert stale.resolution_reason == ResolutionReason.TIMEOUT.value
        assert (await service.get_conversation(tenant.id, fresh.id)).status == HandoffStatus.PENDING_HANDOFF.value
        assert (await service.get_conversation(tenant.id, claimed.id)).status == HandoffStatus.WITH_HUMAN.value


@pytest.mark.asyncio
async def test_broadcast_failure_does_not_fail_operations(db_session, tenant, background):
    notifier = MagicMock()
    notifier.broadcast_to_tenant = AsyncMock(side_effect=RuntimeError("socket gone"))
    service = HandoffService(db_session, notifier=notifier, background=background)

    handoff = await service.create_conversation(tenant.id, "chat-1")
    handoff = await service.request_handoff(tenant.id, handoff.id, "user_request")
    await background.drain()

    assert handoff.status == HandoffStatus.PENDING_HANDOFF.value
    assert notifier.broadcast_to_tenant.await_count == 2


def test_summary_without_messages():
    assert HandoffService.generate_conversation_summary([]) == "New conversation with no messages yet."

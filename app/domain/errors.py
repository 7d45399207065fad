"""Errors raised by the handoff state machine.

Each error carries the HTTP status the route layer maps it to.
"""


class HandoffError(Exception):
    """Base class for handoff state machine errors."""

    status_code = 400
    default_message = "handoff operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class HandoffNotFoundError(HandoffError):
    """Conversation does not exist for the tenant."""

    status_code = 404
    default_message = "conversation not found"


class InvalidStateError(HandoffError):
    """Operation is not allowed from the conversation's current status."""

    status_code = 409
    default_message = "operation not allowed in the current conversation status"


class AlreadyClaimedError(InvalidStateError):
    """Another agent won the claim race."""

    default_message = "conversation already claimed by another agent"


class ConversationResolvedError(InvalidStateError):
    """Conversation is resolved and accepts no more messages."""

    default_message = "this conversation is closed"


class AgentNotFoundError(HandoffError):
    """Human agent does not exist for the tenant."""

    status_code = 404
    default_message = "human agent not found"

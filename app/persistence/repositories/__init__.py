"""Repository implementations."""

from app.persistence.repositories.base import BaseRepository
from app.persistence.repositories.handoff_repository import (
    HandoffMessageRepository,
    HandoffRepository,
)
from app.persistence.repositories.human_agent_repository import HumanAgentRepository
from app.persistence.repositories.user_repository import UserRepository
from app.persistence.repositories.webhook_repository import (
    WebhookCallRepository,
    WebhookRepository,
)

__all__ = [
    "BaseRepository",
    "UserRepository",
    "HumanAgentRepository",
    "HandoffRepository",
    "HandoffMessageRepository",
    "WebhookRepository",
    "WebhookCallRepository",
]

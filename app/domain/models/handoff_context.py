"""Typed context stored alongside a handoff."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator


class ConversationTurn(BaseModel):
    """One prior turn handed to the human agent when a handoff is requested."""

    kind: Literal["prior_ai_turn"] = "prior_ai_turn"
    role: Literal["user", "ai"]
    content: str
    created_at: datetime | None = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: str) -> str:
        if value == "assistant":
            return "ai"
        return value


class HandoffMetadata(BaseModel):
    """Channel correlation data for a handoff."""

    model_config = ConfigDict(extra="forbid")

    channel: Literal["widget", "whatsapp", "voice"] = "widget"
    external_session_id: str | None = None  # provider-side chat/call id
    handoff_reason: str | None = None
    user_agent: str | None = None
    page_url: str | None = None


def dump_history(turns: list[ConversationTurn]) -> list[dict]:
    """Serialize turns for the JSON column."""
    return [turn.model_dump(mode="json") for turn in turns]


def load_history(raw: list[dict] | None) -> list[ConversationTurn]:
    """Parse the JSON column back into turns."""
    return [ConversationTurn.model_validate(item) for item in raw or []]


def load_metadata(raw: dict | None) -> HandoffMetadata:
    return HandoffMetadata.model_validate(raw or {})

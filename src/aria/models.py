"""Core domain models used across the application."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ======================================================================
# Enumerations
# ======================================================================
class ActivityState(str, Enum):
    """What the agent is doing right now, as shown by the avatar."""

    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"
    HAPPY = "happy"
    CONFUSED = "confused"


class TurnOutcome(str, Enum):
    """How a submitted query or capture request was settled."""

    ANSWERED = "answered"
    FAILED = "failed"
    BUSY = "busy"  # rejected, another query holds the ticket
    IGNORED = "ignored"  # blank input, cancelled or empty capture


# ======================================================================
# Search models
# ======================================================================
class SearchResult(BaseModel):
    """A single ranked web-search hit."""

    title: str = ""
    url: str = ""
    content: str = ""
    relevance_score: float = 0.0

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "url": self.url,
            "content": self.content,
            "score": round(self.relevance_score, 3),
        }


# ======================================================================
# Conversation models
# ======================================================================
class Message(BaseModel):
    """One transcript entry.

    Messages are frozen.  The loading placeholder is never flipped to a
    real answer; the conversation swaps it out for a new message instead.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    text: str
    is_user: bool
    timestamp: datetime = Field(default_factory=_utcnow)
    is_loading: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "is_user": self.is_user,
            "timestamp": self.timestamp.isoformat(),
            "is_loading": self.is_loading,
        }


class QueryTicket(BaseModel):
    """Token for the single query allowed in flight."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    query: str
    created_at: datetime = Field(default_factory=_utcnow)


class Conversation:
    """Append-only ordered transcript.

    The only non-append mutation is :meth:`replace_placeholder`, which
    swaps (or drops) the loading message of the query in flight.
    """

    def __init__(self, greeting: str = "") -> None:
        self._messages: list[Message] = []
        if greeting:
            self._messages.append(Message(text=greeting, is_user=False))

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def replace_placeholder(
        self, placeholder_id: str, message: Optional[Message] = None
    ) -> bool:
        """Replace the loading message with *message*, or remove it.

        Returns False if no loading message with that id exists, in which
        case *message* (if any) is appended instead.
        """
        for i, existing in enumerate(self._messages):
            if existing.id == placeholder_id and existing.is_loading:
                if message is None:
                    del self._messages[i]
                else:
                    self._messages[i] = message
                return True
        if message is not None:
            self._messages.append(message)
        return False

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def has_placeholder(self) -> bool:
        return any(m.is_loading for m in self._messages)

    def to_dicts(self) -> list[dict]:
        return [m.to_dict() for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

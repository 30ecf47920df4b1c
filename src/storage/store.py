"""Conversation storage types and the store interface."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Protocol


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StoreError(RuntimeError):
    """The conversation store could not complete an operation."""


@dataclass
class Message:
    """A single persisted conversation turn."""

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            role=data["role"],
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class Conversation:
    """A conversation thread. Stores hand out copies, never their own instance."""

    id: str
    channel_ref: str = ""
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channel_ref": self.channel_ref,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class ConversationStore(Protocol):
    """
    Storage for conversation history.

    Every method raises StoreError on backend failure.
    """

    async def get(self, conversation_id: str) -> Conversation | None:
        """Return a copy of the conversation, or None when it does not exist."""
        ...

    async def save(self, conversation: Conversation) -> None:
        """Store or replace a whole conversation."""
        ...

    async def add_message(self, conversation_id: str, channel_ref: str, message: Message) -> None:
        """Append a message, creating the conversation on first write (upsert)."""
        ...

    async def delete(self, conversation_id: str) -> None:
        """Remove a conversation. Deleting a missing id is not an error."""
        ...

    async def cleanup(self, older_than: timedelta) -> int:
        """Remove conversations idle for longer than `older_than`; return how many."""
        ...

    async def close(self) -> None:
        ...

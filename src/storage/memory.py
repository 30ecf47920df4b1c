"""In-process conversation store."""

import asyncio
import copy
import logging
from datetime import timedelta

from src.storage.store import Conversation, Message, utc_now

logger = logging.getLogger(__name__)


class InMemoryConversationStore:
    """
    Conversation store backed by a dict.

    A single lock serializes get/save/add/delete/cleanup, so an append is
    never observed half-done and concurrent appends to one id are all kept
    in lock-acquisition order. Reads and writes copy, so callers can never
    mutate stored state.
    """

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._lock = asyncio.Lock()

    async def get(self, conversation_id: str) -> Conversation | None:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            return copy.deepcopy(conversation) if conversation else None

    async def save(self, conversation: Conversation) -> None:
        async with self._lock:
            self._conversations[conversation.id] = copy.deepcopy(conversation)

    async def add_message(self, conversation_id: str, channel_ref: str, message: Message) -> None:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                conversation = Conversation(id=conversation_id, channel_ref=channel_ref)
                self._conversations[conversation_id] = conversation
                logger.debug(f"Created conversation {conversation_id}")

            conversation.messages.append(copy.deepcopy(message))
            conversation.updated_at = utc_now()

    async def delete(self, conversation_id: str) -> None:
        async with self._lock:
            self._conversations.pop(conversation_id, None)

    async def cleanup(self, older_than: timedelta) -> int:
        cutoff = utc_now() - older_than
        async with self._lock:
            stale = [cid for cid, c in self._conversations.items() if c.updated_at < cutoff]
            for conversation_id in stale:
                del self._conversations[conversation_id]

        if stale:
            logger.info(f"Cleaned up {len(stale)} idle conversations")
        return len(stale)

    async def close(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self._conversations)

"""Conversation storage."""

from src.storage.memory import InMemoryConversationStore
from src.storage.redis_store import RedisConversationStore
from src.storage.store import Conversation, ConversationStore, Message, StoreError

__all__ = [
    "Conversation",
    "ConversationStore",
    "InMemoryConversationStore",
    "Message",
    "RedisConversationStore",
    "StoreError",
    "create_store",
]


def create_store(backend: str, redis_url: str = "", namespace: str = "repo-agent") -> ConversationStore:
    """Build the configured conversation store."""
    if backend == "memory":
        return InMemoryConversationStore()
    if backend == "redis":
        return RedisConversationStore.from_url(redis_url, namespace=namespace)
    raise ValueError(f"Unknown store backend: {backend}")

"""Redis-backed conversation store."""

import json
import logging
from datetime import datetime, timedelta

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.storage.store import Conversation, Message, StoreError, utc_now

logger = logging.getLogger(__name__)


class RedisConversationStore:
    """
    Conversation store for deployments with more than one process.

    Layout per conversation, under the key namespace:
        {ns}:conversation:{id}           hash  id, channel_ref, created_at, updated_at
        {ns}:conversation:{id}:messages  list  JSON-encoded messages in append order
        {ns}:conversations               zset  conversation id scored by updated_at

    Writes and multi-key reads go through MULTI/EXEC pipelines, so an append
    is atomic and a read never sees metadata without its messages.

    Args:
        redis_client: A client created with decode_responses=True.
        namespace: Key prefix.
    """

    def __init__(self, redis_client: Redis, namespace: str = "repo-agent") -> None:
        self._redis = redis_client
        self._namespace = namespace.rstrip(":")

    @classmethod
    def from_url(cls, url: str, namespace: str = "repo-agent") -> "RedisConversationStore":
        return cls(Redis.from_url(url, decode_responses=True), namespace=namespace)

    def _meta_key(self, conversation_id: str) -> str:
        return f"{self._namespace}:conversation:{conversation_id}"

    def _messages_key(self, conversation_id: str) -> str:
        return f"{self._namespace}:conversation:{conversation_id}:messages"

    @property
    def _index_key(self) -> str:
        return f"{self._namespace}:conversations"

    async def get(self, conversation_id: str) -> Conversation | None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hgetall(self._meta_key(conversation_id))
                pipe.lrange(self._messages_key(conversation_id), 0, -1)
                meta, raw_messages = await pipe.execute()
        except RedisError as e:
            raise StoreError(f"Failed to load conversation {conversation_id}: {e}") from e

        if not meta:
            return None

        return Conversation(
            id=meta.get("id", conversation_id),
            channel_ref=meta.get("channel_ref", ""),
            messages=[Message.from_dict(json.loads(raw)) for raw in raw_messages],
            created_at=datetime.fromisoformat(meta["created_at"]),
            updated_at=datetime.fromisoformat(meta["updated_at"]),
        )

    async def save(self, conversation: Conversation) -> None:
        meta_key = self._meta_key(conversation.id)
        messages_key = self._messages_key(conversation.id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(meta_key, messages_key)
                pipe.hset(meta_key, mapping={
                    "id": conversation.id,
                    "channel_ref": conversation.channel_ref,
                    "created_at": conversation.created_at.isoformat(),
                    "updated_at": conversation.updated_at.isoformat(),
                })
                if conversation.messages:
                    pipe.rpush(messages_key, *(json.dumps(m.to_dict()) for m in conversation.messages))
                pipe.zadd(self._index_key, {conversation.id: conversation.updated_at.timestamp()})
                await pipe.execute()
        except RedisError as e:
            raise StoreError(f"Failed to save conversation {conversation.id}: {e}") from e

    async def add_message(self, conversation_id: str, channel_ref: str, message: Message) -> None:
        meta_key = self._meta_key(conversation_id)
        now = utc_now()
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                # Creation fields are only written when the conversation is new
                pipe.hsetnx(meta_key, "id", conversation_id)
                pipe.hsetnx(meta_key, "channel_ref", channel_ref)
                pipe.hsetnx(meta_key, "created_at", now.isoformat())
                pipe.hset(meta_key, "updated_at", now.isoformat())
                pipe.rpush(self._messages_key(conversation_id), json.dumps(message.to_dict()))
                pipe.zadd(self._index_key, {conversation_id: now.timestamp()})
                await pipe.execute()
        except RedisError as e:
            raise StoreError(f"Failed to append to conversation {conversation_id}: {e}") from e

    async def delete(self, conversation_id: str) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._meta_key(conversation_id), self._messages_key(conversation_id))
                pipe.zrem(self._index_key, conversation_id)
                await pipe.execute()
        except RedisError as e:
            raise StoreError(f"Failed to delete conversation {conversation_id}: {e}") from e

    async def cleanup(self, older_than: timedelta) -> int:
        cutoff = (utc_now() - older_than).timestamp()
        try:
            stale = await self._redis.zrangebyscore(self._index_key, "-inf", f"({cutoff}")
            if not stale:
                return 0

            async with self._redis.pipeline(transaction=True) as pipe:
                for conversation_id in stale:
                    pipe.delete(self._meta_key(conversation_id), self._messages_key(conversation_id))
                pipe.zrem(self._index_key, *stale)
                await pipe.execute()
        except RedisError as e:
            raise StoreError(f"Failed to clean up conversations: {e}") from e

        logger.info(f"Cleaned up {len(stale)} idle conversations")
        return len(stale)

    async def close(self) -> None:
        await self._redis.aclose()

"""Tests for the in-memory and Redis conversation stores."""

import asyncio
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.storage import InMemoryConversationStore, RedisConversationStore, StoreError, create_store
from src.storage.store import Conversation, Message


def memory_store():
    return InMemoryConversationStore()


def redis_store():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return RedisConversationStore(client, namespace="test")


@pytest.fixture(params=[memory_store, redis_store], ids=["memory", "redis"])
def make_store(request):
    return request.param


def run(make_store, scenario):
    async def main():
        store = make_store()
        try:
            return await scenario(store)
        finally:
            await store.close()

    return asyncio.run(main())


def test_get_missing_returns_none(make_store):
    async def scenario(store):
        return await store.get("nope")

    assert run(make_store, scenario) is None


def test_add_message_creates_conversation(make_store):
    async def scenario(store):
        await store.add_message("c1", "channel-1", Message(role="user", content="hi"))
        await store.add_message("c1", "ignored", Message(role="assistant", content="hello"))
        return await store.get("c1")

    conversation = run(make_store, scenario)

    assert conversation.id == "c1"
    assert conversation.channel_ref == "channel-1"
    assert [(m.role, m.content) for m in conversation.messages] == [
        ("user", "hi"),
        ("assistant", "hello"),
    ]
    assert conversation.updated_at >= conversation.created_at


def test_save_replaces_conversation(make_store):
    async def scenario(store):
        await store.add_message("c1", "ch", Message(role="user", content="old"))
        await store.save(Conversation(id="c1", channel_ref="ch2", messages=[Message(role="user", content="new")]))
        return await store.get("c1")

    conversation = run(make_store, scenario)

    assert conversation.channel_ref == "ch2"
    assert [m.content for m in conversation.messages] == ["new"]


def test_returned_conversation_is_a_copy(make_store):
    async def scenario(store):
        await store.add_message("c1", "ch", Message(role="user", content="hi"))
        first = await store.get("c1")
        first.messages.append(Message(role="user", content="injected"))
        return await store.get("c1")

    assert len(run(make_store, scenario).messages) == 1


def test_delete(make_store):
    async def scenario(store):
        await store.add_message("c1", "ch", Message(role="user", content="hi"))
        await store.delete("c1")
        await store.delete("never-existed")
        return await store.get("c1")

    assert run(make_store, scenario) is None


def test_concurrent_appends_are_all_kept(make_store):
    async def scenario(store):
        await asyncio.gather(
            *(store.add_message("c1", "ch", Message(role="user", content=str(i))) for i in range(50))
        )
        return await store.get("c1")

    conversation = run(make_store, scenario)

    assert sorted(int(m.content) for m in conversation.messages) == list(range(50))


def test_memory_appends_keep_arrival_order():
    async def scenario(store):
        await asyncio.gather(
            *(store.add_message("c1", "ch", Message(role="user", content=str(i))) for i in range(50))
        )
        return await store.get("c1")

    conversation = run(memory_store, scenario)

    assert [m.content for m in conversation.messages] == [str(i) for i in range(50)]


def test_cleanup_removes_only_idle_conversations(make_store):
    old = datetime.now(timezone.utc) - timedelta(hours=48)

    async def scenario(store):
        await store.save(Conversation(id="stale", created_at=old, updated_at=old))
        await store.add_message("fresh", "ch", Message(role="user", content="hi"))
        removed = await store.cleanup(timedelta(hours=24))
        return removed, await store.get("stale"), await store.get("fresh")

    removed, stale, fresh = run(make_store, scenario)

    assert removed == 1
    assert stale is None
    assert fresh is not None


def test_message_timestamps_round_trip(make_store):
    stamp = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    async def scenario(store):
        await store.add_message("c1", "ch", Message(role="user", content="hi", timestamp=stamp))
        return await store.get("c1")

    assert run(make_store, scenario).messages[0].timestamp == stamp


def test_redis_keys_are_namespaced():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)

    async def scenario():
        store = RedisConversationStore(client, namespace="ns:")
        await store.add_message("c1", "ch", Message(role="user", content="hi"))
        return sorted(await client.keys("*"))

    assert asyncio.run(scenario()) == [
        "ns:conversation:c1",
        "ns:conversation:c1:messages",
        "ns:conversations",
    ]


def test_redis_errors_become_store_errors():
    class BrokenPipeline:
        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        def __getattr__(self, name):
            def command(*args, **kwargs):
                return self

            return command

        async def execute(self):
            raise RedisConnectionError("connection refused")

    class BrokenRedis:
        def pipeline(self, transaction=True):
            return BrokenPipeline()

    store = RedisConversationStore(BrokenRedis())

    with pytest.raises(StoreError, match="connection refused"):
        asyncio.run(store.get("c1"))


def test_create_store():
    assert isinstance(create_store("memory"), InMemoryConversationStore)
    with pytest.raises(ValueError):
        create_store("sqlite")

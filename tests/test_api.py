"""Tests for the REST API."""

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.agent import ConversationManager
from src.api.routes import router
from src.llm.backend import ModelResponse
from src.storage import InMemoryConversationStore
from src.storage.store import Conversation
from src.tools import CommandValidator, ToolRegistry


class EchoBackend:
    async def complete(self, system, history, tools):
        last = history[-1].content
        if last == "use a tool":
            if len(history) == 1:
                return ModelResponse(
                    blocks=[{"type": "tool_use", "id": "t1", "name": "ping", "input": {}}],
                    stop_reason="tool_calls",
                )
        if last == "break":
            raise ConnectionError("model unreachable")
        return ModelResponse(blocks=[{"type": "text", "text": f"You said: {last}"}], stop_reason="stop")


class LoopingBackend:
    async def complete(self, system, history, tools):
        return ModelResponse(
            blocks=[{"type": "tool_use", "id": f"t{len(history)}", "name": "ping", "input": {}}],
            stop_reason="tool_calls",
        )


def make_client(backend) -> TestClient:
    registry = ToolRegistry()
    registry.register("ping", "Reply with pong", {}, lambda: "pong")
    store = InMemoryConversationStore()

    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    app.state.registry = registry
    app.state.store = store
    app.state.validator = CommandValidator()
    app.state.manager = ConversationManager(
        backend=backend,
        registry=registry,
        store=store,
        system_prompt="test",
        max_iterations=3,
    )
    return TestClient(app)


@pytest.fixture
def client() -> TestClient:
    return make_client(EchoBackend())


def test_post_message(client):
    response = client.post("/api/v1/conversations/c1/messages", json={"text": "hello", "channel_ref": "C42"})

    assert response.status_code == 200
    body = response.json()
    assert body["conversation_id"] == "c1"
    assert body["response"] == "You said: hello"
    assert body["iterations"] == 1


def test_post_message_with_tool_call(client):
    body = client.post("/api/v1/conversations/c1/messages", json={"text": "use a tool"}).json()

    assert body["iterations"] == 2
    assert body["tool_results"] == [{"invocation_id": "t1", "output": "pong", "is_error": False}]
    assert body["response"] == "You said: pong"


def test_empty_message_rejected(client):
    assert client.post("/api/v1/conversations/c1/messages", json={"text": ""}).status_code == 422


def test_backend_failure_is_502(client):
    response = client.post("/api/v1/conversations/c1/messages", json={"text": "break"})

    assert response.status_code == 502
    assert "model unreachable" in response.json()["detail"]


def test_iteration_limit_is_500():
    client = make_client(LoopingBackend())

    response = client.post("/api/v1/conversations/c1/messages", json={"text": "loop"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Exceeded maximum tool iterations (3)"


def test_get_and_delete_conversation(client):
    client.post("/api/v1/conversations/c1/messages", json={"text": "hello", "channel_ref": "C42"})

    body = client.get("/api/v1/conversations/c1").json()
    assert body["channel_ref"] == "C42"
    assert [(m["role"], m["content"]) for m in body["messages"]] == [
        ("user", "hello"),
        ("assistant", "You said: hello"),
    ]

    assert client.delete("/api/v1/conversations/c1").json() == {"status": "cleared"}
    assert client.get("/api/v1/conversations/c1").status_code == 404


def test_get_missing_conversation(client):
    assert client.get("/api/v1/conversations/nope").status_code == 404


@pytest.mark.parametrize(
    "command,allowed,reason",
    [
        ("git status", True, "Allowed"),
        ("git push origin main", False, "direct push to main/master not allowed"),
        ("python x.py", False, "command not allowed: python"),
    ],
)
def test_validate_command(client, command, allowed, reason):
    body = client.post("/api/v1/commands/validate", json={"command": command}).json()

    assert body == {"command": command, "allowed": allowed, "reason": reason}


def test_list_tools(client):
    tools = client.get("/api/v1/tools").json()
    assert tools == [{"name": "ping", "description": "Reply with pong", "parameters": {}}]


def test_cleanup_loop_logs_removals_once(monkeypatch, caplog):
    from src.api import main as api_main

    monkeypatch.setattr(api_main.settings, "cleanup_interval_seconds", 0)
    monkeypatch.setattr(api_main.settings, "conversation_ttl_hours", 1)
    old = datetime.now(timezone.utc) - timedelta(hours=2)
    store = InMemoryConversationStore()

    async def scenario():
        await store.save(Conversation(id="stale", created_at=old, updated_at=old))
        task = asyncio.create_task(api_main._cleanup_loop(store))
        for _ in range(20):
            await asyncio.sleep(0)
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        return await store.get("stale")

    with caplog.at_level(logging.INFO):
        assert asyncio.run(scenario()) is None

    assert [r.getMessage() for r in caplog.records].count("Cleaned up 1 idle conversations") == 1

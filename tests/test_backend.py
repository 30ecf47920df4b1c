"""Tests for model response parsing and message conversion."""

import asyncio
import json
from types import SimpleNamespace

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from src.llm import backend as backend_module
from src.llm.backend import LiteLLMBackend, ModelResponse, convert_messages, parse_response


def fake_completion(content=None, tool_calls=(), finish_reason="stop"):
    calls = [
        SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))
        for call_id, name, arguments in tool_calls
    ]
    message = SimpleNamespace(content=content, tool_calls=calls or None)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        model="test-model",
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5),
    )


class TestParseResponse:
    def test_plain_text(self):
        response = parse_response(fake_completion("Hello"))

        assert response.text == "Hello"
        assert not response.requests_tools
        assert response.stop_reason == "stop"
        assert response.model == "test-model"
        assert response.usage == {"prompt_tokens": 10, "completion_tokens": 5}

    def test_text_and_tool_calls_keep_order(self):
        response = parse_response(
            fake_completion(
                "Let me look.",
                [
                    ("c1", "read_file", '{"path": "a.py"}'),
                    ("c2", "git_status", ""),
                ],
                finish_reason="tool_calls",
            )
        )

        assert response.requests_tools
        assert [b["type"] for b in response.blocks] == ["text", "tool_use", "tool_use"]
        invocations = response.tool_invocations
        assert [(i.id, i.name, i.arguments) for i in invocations] == [
            ("c1", "read_file", {"path": "a.py"}),
            ("c2", "git_status", {}),
        ]

    @pytest.mark.parametrize("raw", ['{"path": ', '["a"]'])
    def test_undecodable_arguments_kept_raw(self, raw):
        response = parse_response(fake_completion(None, [("c1", "read_file", raw)]))
        assert response.tool_invocations[0].arguments == raw

    def test_tool_use_without_tool_stop_reason_still_requests_tools(self):
        response = parse_response(fake_completion(None, [("c1", "git_status", "{}")], finish_reason="stop"))
        assert response.requests_tools


class TestToMessage:
    def test_preserves_blocks_and_tool_calls(self):
        response = ModelResponse(
            blocks=[
                {"type": "text", "text": "Checking"},
                {"type": "tool_use", "id": "c1", "name": "read_file", "input": {"path": "a"}},
                {"type": "tool_use", "id": "c2", "name": "search_code", "input": "{bad"},
            ],
            stop_reason="tool_calls",
        )

        message = response.to_message()

        assert message.content[0] == {"type": "text", "text": "Checking"}
        assert [c["id"] for c in message.tool_calls] == ["c1"]
        assert [c["id"] for c in message.invalid_tool_calls] == ["c2"]


class TestConvertMessages:
    def test_round_of_tool_use(self):
        assistant = ModelResponse(
            blocks=[
                {"type": "text", "text": "Reading"},
                {"type": "tool_use", "id": "c1", "name": "read_file", "input": {"path": "a"}},
            ],
            stop_reason="tool_calls",
        ).to_message()
        history = [
            HumanMessage(content="What is in a?"),
            assistant,
            ToolMessage(content="contents", tool_call_id="c1"),
            AIMessage(content="It holds contents."),
        ]

        messages = convert_messages("system prompt", history)

        assert messages[0] == {"role": "system", "content": "system prompt"}
        assert messages[1] == {"role": "user", "content": "What is in a?"}
        assert messages[2]["role"] == "assistant"
        assert messages[2]["content"] == "Reading"
        call = messages[2]["tool_calls"][0]
        assert call["id"] == "c1"
        assert call["function"]["name"] == "read_file"
        assert json.loads(call["function"]["arguments"]) == {"path": "a"}
        assert messages[3] == {"role": "tool", "tool_call_id": "c1", "content": "contents"}
        assert messages[4] == {"role": "assistant", "content": "It holds contents."}

    def test_raw_arguments_sent_back_unchanged(self):
        assistant = ModelResponse(
            blocks=[{"type": "tool_use", "id": "c1", "name": "read_file", "input": "{bad"}],
            stop_reason="tool_calls",
        ).to_message()

        messages = convert_messages("s", [assistant])

        assert messages[1]["content"] is None
        assert messages[1]["tool_calls"][0]["function"]["arguments"] == "{bad"


class TestLiteLLMBackend:
    def test_complete_passes_tools_and_parses(self, monkeypatch):
        captured = {}

        async def fake_acompletion(**kwargs):
            captured.update(kwargs)
            return fake_completion("done")

        monkeypatch.setattr(backend_module, "acompletion", fake_acompletion)
        backend = LiteLLMBackend(model="anthropic/test", max_tokens=100, timeout=5, api_key="key")
        tools = [{"type": "function", "function": {"name": "git_status"}}]

        response = asyncio.run(backend.complete("sys", [HumanMessage(content="hi")], tools))

        assert response.text == "done"
        assert captured["model"] == "anthropic/test"
        assert captured["tools"] == tools
        assert captured["api_key"] == "key"
        assert captured["messages"][0] == {"role": "system", "content": "sys"}

    def test_complete_reraises_transport_errors(self, monkeypatch):
        async def failing(**kwargs):
            raise ConnectionError("unreachable")

        monkeypatch.setattr(backend_module, "acompletion", failing)

        with pytest.raises(ConnectionError):
            asyncio.run(LiteLLMBackend(model="m").complete("sys", [], []))

"""Model backend: tool-calling completions through LiteLLM."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from litellm import acompletion

from config.settings import settings
from src.tools.registry import ToolInvocation

logger = logging.getLogger(__name__)


@dataclass
class ModelResponse:
    """
    One model turn.

    `blocks` keeps the response in order: {"type": "text", "text": ...} and
    {"type": "tool_use", "id", "name", "input"} entries, where "input" is the
    decoded argument object or the raw string when decoding failed.
    """

    blocks: list[dict[str, Any]]
    stop_reason: str
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "\n".join(b["text"] for b in self.blocks if b["type"] == "text" and b["text"])

    @property
    def tool_invocations(self) -> list[ToolInvocation]:
        return [
            ToolInvocation(id=b["id"], name=b["name"], arguments=b["input"])
            for b in self.blocks
            if b["type"] == "tool_use"
        ]

    @property
    def requests_tools(self) -> bool:
        return any(b["type"] == "tool_use" for b in self.blocks)

    def to_message(self) -> AIMessage:
        """Assistant history entry preserving the block order."""
        tool_calls = []
        invalid_tool_calls = []
        for block in self.blocks:
            if block["type"] != "tool_use":
                continue
            if isinstance(block["input"], dict):
                tool_calls.append({"name": block["name"], "args": block["input"], "id": block["id"]})
            else:
                invalid_tool_calls.append({
                    "name": block["name"],
                    "args": str(block["input"]),
                    "id": block["id"],
                    "error": "arguments are not a JSON object",
                })

        return AIMessage(
            content=[dict(b) for b in self.blocks],
            tool_calls=tool_calls,
            invalid_tool_calls=invalid_tool_calls,
        )


class ModelBackend(Protocol):
    """Anything that can answer a system prompt + history with a ModelResponse."""

    async def complete(
        self,
        system: str,
        history: list[BaseMessage],
        tools: list[dict[str, Any]],
    ) -> ModelResponse:
        ...


def _message_text(message: BaseMessage) -> str:
    if isinstance(message.content, str):
        return message.content
    parts = []
    for block in message.content:
        if isinstance(block, str):
            parts.append(block)
        elif block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "\n".join(p for p in parts if p)


def _assistant_tool_calls(message: AIMessage) -> list[dict[str, Any]]:
    blocks = message.content if isinstance(message.content, list) else []
    calls = []
    for block in blocks:
        if not isinstance(block, dict) or block.get("type") != "tool_use":
            continue
        arguments = block["input"]
        calls.append({
            "id": block["id"],
            "type": "function",
            "function": {
                "name": block["name"],
                "arguments": arguments if isinstance(arguments, str) else json.dumps(arguments),
            },
        })
    return calls


def convert_messages(system: str, history: list[BaseMessage]) -> list[dict[str, Any]]:
    """Convert LangChain messages to LiteLLM format."""
    converted: list[dict[str, Any]] = [{"role": "system", "content": system}]
    for msg in history:
        if isinstance(msg, SystemMessage):
            converted.append({"role": "system", "content": _message_text(msg)})
        elif isinstance(msg, HumanMessage):
            converted.append({"role": "user", "content": _message_text(msg)})
        elif isinstance(msg, ToolMessage):
            converted.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": _message_text(msg),
            })
        elif isinstance(msg, AIMessage):
            entry: dict[str, Any] = {"role": "assistant", "content": _message_text(msg) or None}
            tool_calls = _assistant_tool_calls(msg)
            if tool_calls:
                entry["tool_calls"] = tool_calls
            converted.append(entry)
        else:
            raise ValueError(f"Unsupported message type: {type(msg).__name__}")
    return converted


def _decode_arguments(raw: str | None) -> dict[str, Any] | str:
    if not raw or not raw.strip():
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    return decoded if isinstance(decoded, dict) else raw


def parse_response(response: Any) -> ModelResponse:
    """Build a ModelResponse from a LiteLLM (OpenAI-shaped) completion."""
    choice = response.choices[0]
    message = choice.message

    blocks: list[dict[str, Any]] = []
    if message.content:
        blocks.append({"type": "text", "text": message.content})

    for call in message.tool_calls or []:
        blocks.append({
            "type": "tool_use",
            "id": call.id,
            "name": call.function.name,
            "input": _decode_arguments(call.function.arguments),
        })

    usage = {}
    if getattr(response, "usage", None):
        usage = {
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
        }

    return ModelResponse(
        blocks=blocks,
        stop_reason=choice.finish_reason or "",
        model=getattr(response, "model", "") or "",
        usage=usage,
    )


class LiteLLMBackend:
    """ModelBackend calling any LiteLLM-supported provider."""

    def __init__(
        self,
        model: str | None = None,
        max_tokens: int | None = None,
        timeout: int | None = None,
        api_key: str | None = None,
    ) -> None:
        self._model = model or settings.model
        self._max_tokens = max_tokens or settings.max_tokens
        self._timeout = timeout or settings.model_timeout
        self._api_key = api_key or settings.anthropic_api_key

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        system: str,
        history: list[BaseMessage],
        tools: list[dict[str, Any]],
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": convert_messages(system, history),
            "max_tokens": self._max_tokens,
            "timeout": self._timeout,
        }
        if tools:
            kwargs["tools"] = tools
        if self._api_key:
            kwargs["api_key"] = self._api_key

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            logger.error(f"Model call failed ({self._model}): {e}")
            raise

        result = parse_response(response)
        logger.debug(
            f"Model {result.model or self._model} stopped with {result.stop_reason}, "
            f"{len(result.tool_invocations)} tool calls"
        )
        return result

"""Agent control loop: model calls, tool dispatch and conversation bookkeeping."""

import asyncio
import inspect
import logging
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage

from config.settings import settings
from src.llm.backend import ModelBackend, ModelResponse
from src.storage.store import ConversationStore, Message
from src.tools.registry import ToolInvocation, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

StepCallback = Callable[[ToolInvocation, ToolResult], Awaitable[None] | None]


class LoopState(str, Enum):
    """States of one tool loop run."""

    AWAITING_MODEL = "awaiting_model"
    EVALUATING_RESPONSE = "evaluating_response"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ITERATION_LIMIT_EXCEEDED = "iteration_limit_exceeded"


class AgentError(Exception):
    """A fatal loop failure. Carries the in-memory history up to the failure."""

    def __init__(self, message: str, history: list[BaseMessage]) -> None:
        super().__init__(message)
        self.history = history


class ModelBackendError(AgentError):
    """The model backend call failed."""


class IterationLimitExceeded(AgentError):
    """The model kept requesting tools past the iteration ceiling."""

    def __init__(self, iterations: int, history: list[BaseMessage]) -> None:
        super().__init__(f"Exceeded maximum tool iterations ({iterations})", history)
        self.iterations = iterations
        self.state = LoopState.ITERATION_LIMIT_EXCEEDED


@dataclass
class AgentResult:
    """Result from one processed user message."""

    response: str
    iterations: int
    tool_results: list[ToolResult]
    state: LoopState = LoopState.DONE
    history: list[BaseMessage] = field(default_factory=list, repr=False)


def _to_tool_message(result: ToolResult) -> ToolMessage:
    return ToolMessage(
        content=result.output,
        tool_call_id=result.invocation_id,
        status="error" if result.is_error else "success",
    )


class ConversationManager:
    """
    Turns user messages into agent answers.

    Each conversation id runs at most one loop at a time; loops for
    different ids run concurrently. Within a loop, model calls and tool
    executions are strictly sequential.
    """

    def __init__(
        self,
        backend: ModelBackend,
        registry: ToolRegistry,
        store: ConversationStore,
        system_prompt: str,
        max_iterations: int | None = None,
        step_callback: StepCallback | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._store = store
        self._system_prompt = system_prompt
        self._max_iterations = max_iterations or settings.agent_max_iterations
        self._step_callback = step_callback
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    async def process_message(self, conversation_id: str, channel_ref: str, text: str) -> AgentResult:
        """
        Run one user message through the agent.

        Args:
            conversation_id: Conversation (thread) identifier
            channel_ref: Opaque reference to where the conversation lives
            text: The user's message

        Returns:
            AgentResult with the final answer

        Raises:
            ModelBackendError: the model call failed
            IterationLimitExceeded: no final answer within the iteration ceiling
        """
        lock = self._lock_for(conversation_id)
        async with lock:
            history = await self._load_history(conversation_id)
            history.append(HumanMessage(content=text))
            await self._persist(conversation_id, channel_ref, Message(role="user", content=text))

            result = await self.run_tool_loop(history)

            await self._persist(
                conversation_id,
                channel_ref,
                Message(role="assistant", content=result.response),
            )
            logger.info(
                f"Conversation {conversation_id}: answered after {result.iterations} iterations, "
                f"{len(result.tool_results)} tool calls"
            )
            return result

    async def run_tool_loop(self, history: list[BaseMessage]) -> AgentResult:
        """Drive model/tool round-trips on `history` until a final answer."""
        tools = self._registry.get_tools_schema()
        tool_results: list[ToolResult] = []
        state = LoopState.AWAITING_MODEL

        for iteration in range(1, self._max_iterations + 1):
            logger.debug(f"Iteration {iteration}: {state.value}")
            try:
                response = await self._backend.complete(self._system_prompt, history, tools)
            except Exception as e:
                logger.error(f"Model backend failed on iteration {iteration}: {e}")
                raise ModelBackendError(f"Model backend failed: {e}", history) from e

            state = LoopState.EVALUATING_RESPONSE
            if not response.requests_tools:
                text = response.text
                history.append(AIMessage(content=text))
                return AgentResult(
                    response=text,
                    iterations=iteration,
                    tool_results=tool_results,
                    state=LoopState.DONE,
                    history=history,
                )

            state = LoopState.EXECUTING_TOOLS
            history.append(response.to_message())
            batch = await self._execute_tools(response)
            tool_results.extend(batch)
            history.extend(_to_tool_message(result) for result in batch)
            state = LoopState.AWAITING_MODEL

        logger.error(f"Tool loop hit the iteration ceiling ({self._max_iterations})")
        raise IterationLimitExceeded(self._max_iterations, history)

    async def _execute_tools(self, response: ModelResponse) -> list[ToolResult]:
        """Run every requested invocation in listed order, one at a time."""
        results = []
        for invocation in response.tool_invocations:
            logger.info(f"Tool call: {invocation.name}")
            result = await self._registry.dispatch(invocation)
            results.append(result)
            await self._notify_step(invocation, result)
        return results

    async def _notify_step(self, invocation: ToolInvocation, result: ToolResult) -> None:
        if not self._step_callback:
            return
        try:
            outcome = self._step_callback(invocation, result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Step callback failed for {invocation.name}: {e}")

    async def _load_history(self, conversation_id: str) -> list[BaseMessage]:
        try:
            conversation = await self._store.get(conversation_id)
        except Exception as e:
            logger.warning(f"Failed to load conversation {conversation_id}: {e}")
            return []

        if conversation is None:
            return []

        history: list[BaseMessage] = []
        for message in conversation.messages:
            if message.role == "user":
                history.append(HumanMessage(content=message.content))
            elif message.role == "assistant":
                history.append(AIMessage(content=message.content))
        return history

    async def _persist(self, conversation_id: str, channel_ref: str, message: Message) -> None:
        try:
            await self._store.add_message(conversation_id, channel_ref, message)
        except Exception as e:
            logger.warning(f"Failed to store {message.role} message for {conversation_id}: {e}")

    async def clear_conversation(self, conversation_id: str) -> None:
        """Delete a conversation's stored history."""
        async with self._lock_for(conversation_id):
            await self._store.delete(conversation_id)
        logger.info(f"Cleared conversation {conversation_id}")

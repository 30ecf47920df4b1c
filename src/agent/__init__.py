"""Agent components."""

from src.agent.conversation import (
    AgentError,
    AgentResult,
    ConversationManager,
    IterationLimitExceeded,
    LoopState,
    ModelBackendError,
)
from src.agent.prompts import DEFAULT_SYSTEM_PROMPT, build_system_prompt, load_system_prompt

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "AgentError",
    "AgentResult",
    "ConversationManager",
    "IterationLimitExceeded",
    "LoopState",
    "ModelBackendError",
    "build_system_prompt",
    "load_system_prompt",
]

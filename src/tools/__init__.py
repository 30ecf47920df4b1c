"""Tool components."""

from src.tools.codebase import Codebase, PathEscapeError, SearchMatch
from src.tools.git import GitError, GitHub, GitOperations, PullRequest
from src.tools.handlers import RepositoryTools, build_registry
from src.tools.parser import AnalysisResult, analyze_output
from src.tools.registry import (
    TOOL_CATALOG,
    CommandRejected,
    ToolArgumentError,
    ToolDefinition,
    ToolInvocation,
    ToolRegistry,
    ToolResult,
    UnknownToolError,
)
from src.tools.runner import CommandResult, CommandRunner
from src.tools.sandbox import (
    CommandPolicy,
    CommandValidator,
    Verdict,
    sanitize_branch_name,
    sanitize_commit_message,
)

__all__ = [
    "TOOL_CATALOG",
    "AnalysisResult",
    "Codebase",
    "CommandPolicy",
    "CommandRejected",
    "CommandResult",
    "CommandRunner",
    "CommandValidator",
    "GitError",
    "GitHub",
    "GitOperations",
    "PathEscapeError",
    "PullRequest",
    "RepositoryTools",
    "SearchMatch",
    "ToolArgumentError",
    "ToolDefinition",
    "ToolInvocation",
    "ToolRegistry",
    "ToolResult",
    "UnknownToolError",
    "Verdict",
    "analyze_output",
    "build_registry",
    "sanitize_branch_name",
    "sanitize_commit_message",
]

"""Command sandboxing: allowlist and deny-list validation for shell commands.

Validation is a pure classification step in front of a trusted shell. It does
not isolate processes; it only decides whether a command string may be handed
to the runner at all.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


DEFAULT_ALLOWED_COMMANDS = (
    # Version control
    "git",
    "gh",
    # Read-only file operations
    "ls", "cat", "head", "tail", "find", "grep", "wc", "diff",
    # Utilities
    "echo", "pwd", "date", "which", "file", "stat",
    # Build tools
    "make", "mvn", "gradle", "npm", "yarn", "pnpm", "cargo", "go",
)

# Matched as literal case-insensitive substrings, never as regular expressions.
DEFAULT_DANGEROUS_PATTERNS = (
    # Destructive operations
    "rm -rf /",
    "rm -rf ~",
    "rm -rf $HOME",
    "> /dev/",
    "mkfs",
    "dd if=",
    ":(){:|:&};:",
    # Network exfiltration
    "curl.*|.*sh",
    "wget.*|.*sh",
    # Privilege escalation
    "sudo",
    "su -",
    "chmod 777",
    "chown root",
    # Sensitive file access
    "/etc/passwd",
    "/etc/shadow",
    "~/.ssh",
    ".ssh/",
    # Environment variable exposure
    "printenv",
    "export.*=",
)

DEFAULT_BLOCKED_GIT_COMMANDS = (
    "push --force",
    "push -f",
    "reset --hard",
    "clean -f",
    "clean -fd",
    "checkout .",
    "restore .",
)

DEFAULT_PROTECTED_BRANCHES = ("main", "master")

UPSTREAM_FLAGS = ("-u", "--set-upstream")
FORCE_PUSH_FLAGS = ("-f", "--force", "--force-with-lease", "--force-if-includes")
# Matched after case-folding, so "-c" also covers "-C <path>"
GIT_OPTIONS_WITH_VALUE = ("-c", "--config-env", "--git-dir", "--work-tree", "--namespace")

_CHAIN_SEPARATORS = re.compile(r"&&|;|\n")

_BRANCH_REPLACEMENTS = (
    ("@{", "-"),
    (" ", "-"),
    ("..", "-"),
    ("~", "-"),
    ("^", "-"),
    (":", "-"),
    ("?", "-"),
    ("*", "-"),
    ("[", "-"),
    ("]", "-"),
    ("\\", "-"),
)
MAX_BRANCH_NAME_LENGTH = 100


@dataclass(frozen=True)
class Verdict:
    """Allow/deny classification of one candidate command."""

    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def allow(cls) -> "Verdict":
        return cls(allowed=True, reason="Allowed")

    @classmethod
    def reject(cls, reason: str) -> "Verdict":
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class CommandPolicy:
    """Immutable allow/deny configuration consumed by the validator."""

    allowed_commands: tuple[str, ...] = DEFAULT_ALLOWED_COMMANDS
    dangerous_patterns: tuple[str, ...] = DEFAULT_DANGEROUS_PATTERNS
    blocked_git_commands: tuple[str, ...] = DEFAULT_BLOCKED_GIT_COMMANDS
    protected_branches: tuple[str, ...] = DEFAULT_PROTECTED_BRANCHES
    max_depth: int = 8

    @classmethod
    def from_yaml(cls, path: Path) -> "CommandPolicy":
        """Load a policy from YAML, falling back to the defaults for missing keys."""
        if not path.exists():
            logger.warning(f"Command policy not found: {path}, using defaults")
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Command policy must be a mapping: {path}")

        defaults = cls()
        return cls(
            allowed_commands=tuple(data.get("allowed_commands", defaults.allowed_commands)),
            dangerous_patterns=tuple(data.get("dangerous_patterns", defaults.dangerous_patterns)),
            blocked_git_commands=tuple(
                data.get("blocked_git_commands", defaults.blocked_git_commands)
            ),
            protected_branches=tuple(data.get("protected_branches", defaults.protected_branches)),
            max_depth=int(data.get("max_depth", defaults.max_depth)),
        )

    def describe_allowlist(self) -> str:
        """Comma-separated allowlist, in policy order, for tool descriptions."""
        return ", ".join(self.allowed_commands)


class CommandValidator:
    """
    Classifies shell command strings as permitted or rejected.

    Checks run in precedence order, first match wins:
    empty command, deny-list substrings, chained/piped decomposition,
    base-command allowlist, then git-specific policy.
    """

    def __init__(self, policy: CommandPolicy | None = None) -> None:
        self._policy = policy or CommandPolicy()

    @property
    def policy(self) -> CommandPolicy:
        return self._policy

    def validate(self, command: str) -> Verdict:
        """Return the verdict for a command. Never raises."""
        if not isinstance(command, str):
            return Verdict.reject("command must be a string")
        return self._validate(command, depth=0)

    def _validate(self, command: str, depth: int) -> Verdict:
        if depth > self._policy.max_depth:
            return Verdict.reject("command nesting too deep")

        command = command.strip()
        if not command:
            return Verdict.reject("empty command")

        verdict = self._check_dangerous_patterns(command)
        if not verdict:
            return verdict

        if _CHAIN_SEPARATORS.search(command):
            return self._validate_chain(command, depth)

        if "|" in command:
            return self._validate_pipe(command)

        return self._check_command(command)

    def _check_dangerous_patterns(self, command: str) -> Verdict:
        lowered = command.casefold()
        for pattern in self._policy.dangerous_patterns:
            if pattern.casefold() in lowered:
                return Verdict.reject(f"command contains dangerous pattern: {pattern}")
        return Verdict.allow()

    def _validate_chain(self, command: str, depth: int) -> Verdict:
        segments = [s for s in _CHAIN_SEPARATORS.split(command) if s.strip()]
        if not segments:
            return Verdict.reject("empty command")

        for segment in segments:
            verdict = self._validate(segment, depth + 1)
            if not verdict:
                return verdict
        return Verdict.allow()

    def _validate_pipe(self, command: str) -> Verdict:
        segments = [s.strip() for s in command.split("|") if s.strip()]
        if not segments:
            return Verdict.reject("empty command")

        for segment in segments:
            verdict = self._check_command(segment, in_pipe=True)
            if not verdict:
                return verdict
        return Verdict.allow()

    def _check_command(self, command: str, in_pipe: bool = False) -> Verdict:
        base = self.base_command(command)
        if base not in self._policy.allowed_commands:
            where = " in pipe" if in_pipe else ""
            return Verdict.reject(f"command not allowed{where}: {base}")

        if base == "git":
            return self._check_git(command)

        return Verdict.allow()

    def _check_git(self, command: str) -> Verdict:
        lowered = command.casefold()
        for blocked in self._policy.blocked_git_commands:
            if blocked.casefold() in lowered:
                return Verdict.reject(f"git operation not allowed: {blocked}")

        tokens = lowered.split()
        index = self._subcommand_index(tokens)
        if self._defines_alias(tokens[1:index]):
            return Verdict.reject("git operation not allowed: alias definition")
        if index is None or tokens[index] != "push":
            return Verdict.allow()

        push_args = tokens[index + 1:]
        if any(self._is_force_push_arg(arg) for arg in push_args):
            return Verdict.reject("git operation not allowed: force push")

        if self._references_protected_branch(push_args) and not self._sets_upstream(push_args):
            return Verdict.reject("direct push to main/master not allowed")

        return Verdict.allow()

    @staticmethod
    def _subcommand_index(tokens: list[str]) -> int | None:
        """Index of the git subcommand, skipping global options like -C <path>."""
        i = 1
        while i < len(tokens):
            token = tokens[i]
            if token in GIT_OPTIONS_WITH_VALUE:
                i += 2
            elif token.startswith("-"):
                i += 1
            else:
                return i
        return None

    @staticmethod
    def _defines_alias(options: list[str]) -> bool:
        """True when global options define an alias through -c or --config-env."""
        for i, option in enumerate(options):
            if option in ("-c", "--config-env") and i + 1 < len(options):
                value = options[i + 1]
            elif option.startswith("-c") or option.startswith("--config-env"):
                value = option.removeprefix("--config-env").removeprefix("-c").lstrip("=")
            else:
                continue
            if value.strip("\"'").startswith("alias."):
                return True
        return False

    def _references_protected_branch(self, args: list[str]) -> bool:
        protected = {branch.casefold() for branch in self._policy.protected_branches}
        for arg in args:
            if arg.startswith("-"):
                continue
            destination = arg.split(":")[-1].removeprefix("refs/heads/")
            if destination in protected:
                return True
        return False

    @staticmethod
    def _sets_upstream(args: list[str]) -> bool:
        for arg in args:
            if arg in UPSTREAM_FLAGS or arg.startswith("--set-upstream"):
                return True
            # Short flag clusters such as -uv
            if arg.startswith("-") and not arg.startswith("--") and "u" in arg[1:]:
                return True
        return False

    @staticmethod
    def _is_force_push_arg(arg: str) -> bool:
        if arg.startswith("+"):
            return True
        if any(arg == flag or arg.startswith(flag + "=") for flag in FORCE_PUSH_FLAGS):
            return True
        return arg.startswith("-") and not arg.startswith("--") and "f" in arg[1:]

    @staticmethod
    def base_command(command: str) -> str:
        """Leading token of a command with any path qualification stripped."""
        parts = command.split()
        if not parts:
            return ""
        return parts[0].rsplit("/", 1)[-1]


def sanitize_branch_name(name: str) -> str:
    """Replace characters git rejects in ref names and cap the length."""
    for unsafe, replacement in _BRANCH_REPLACEMENTS:
        name = name.replace(unsafe, replacement)

    name = name.strip("-/")

    if len(name) > MAX_BRANCH_NAME_LENGTH:
        name = name[:MAX_BRANCH_NAME_LENGTH]

    return name


def sanitize_commit_message(message: str) -> str:
    """Neutralize characters usable for shell injection in a commit message."""
    message = message.replace("`", "'")
    message = message.replace("$", "")
    message = message.replace("\\", "")
    return message

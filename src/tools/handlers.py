"""Repository tool handlers and the registry factory that wires them up."""

import logging
from pathlib import Path

from src.tools.codebase import Codebase
from src.tools.git import GitHub, GitOperations
from src.tools.guidelines import load_guidelines
from src.tools.parser import analyze_output
from src.tools.registry import CommandRejected, ToolRegistry
from src.tools.runner import CommandRunner
from src.tools.sandbox import CommandValidator

logger = logging.getLogger(__name__)


class RepositoryTools:
    """
    Handlers for the repository tool catalog.

    Each handler decodes nothing itself: the registry binds and type-checks
    arguments first. Handlers raise on failure and the registry turns the
    exception into an error-flagged tool result.
    """

    def __init__(
        self,
        codebase: Codebase,
        validator: CommandValidator,
        runner: CommandRunner,
        git: GitOperations,
        github: GitHub,
        guidelines_file: str = "",
    ) -> None:
        self._codebase = codebase
        self._validator = validator
        self._runner = runner
        self._git = git
        self._github = github
        self._guidelines_file = guidelines_file

    def register_all(self, registry: ToolRegistry) -> None:
        """Register every catalog tool on the registry."""
        self._register_code_tools(registry)
        self._register_build_tools(registry)
        self._register_git_tools(registry)
        self._register_intelligence_tools(registry)

    def _register_code_tools(self, registry: ToolRegistry) -> None:
        registry.register(
            name="read_file",
            description=(
                "Read the contents of a file at the given path. "
                "With start_line/end_line, returns numbered lines from that range."
            ),
            parameters={
                "path": {
                    "type": "string",
                    "description": "Path to the file, relative to the repository root",
                    "required": True,
                },
                "start_line": {
                    "type": "integer",
                    "description": "First line to return (1-indexed)",
                    "required": False,
                    "default": 0,
                },
                "end_line": {
                    "type": "integer",
                    "description": "Last line to return (1-indexed)",
                    "required": False,
                    "default": 0,
                },
            },
            handler=self._read_file,
        )

        registry.register(
            name="list_files",
            description="List files matching a glob pattern. Returns a list of file paths.",
            parameters={
                "pattern": {
                    "type": "string",
                    "description": "Glob pattern (e.g. '**/*.java', 'src/**/*.go')",
                    "required": True,
                },
            },
            handler=self._list_files,
        )

        registry.register(
            name="search_code",
            description=(
                "Search the codebase for a regular expression. "
                "Returns matching lines with file paths and line numbers."
            ),
            parameters={
                "pattern": {
                    "type": "string",
                    "description": "Regular expression to search for",
                    "required": True,
                },
                "path": {
                    "type": "string",
                    "description": "Directory to limit the search to",
                    "required": False,
                    "default": "",
                },
                "case_sensitive": {
                    "type": "boolean",
                    "description": "Case-sensitive search (default: false)",
                    "required": False,
                    "default": False,
                },
                "max_results": {
                    "type": "integer",
                    "description": "Maximum number of matches (default: 50)",
                    "required": False,
                    "default": 50,
                },
            },
            handler=self._search_code,
        )

        registry.register(
            name="get_tree",
            description="Get the directory structure of the repository or a subdirectory.",
            parameters={
                "path": {
                    "type": "string",
                    "description": "Directory to show (default: repository root)",
                    "required": False,
                    "default": "",
                },
                "max_depth": {
                    "type": "integer",
                    "description": "Maximum depth to traverse (default: 3)",
                    "required": False,
                    "default": 3,
                },
            },
            handler=self._get_tree,
        )

        registry.register(
            name="write_file",
            description="Write content to a file, creating it or overwriting it.",
            parameters={
                "path": {
                    "type": "string",
                    "description": "Path to the file, relative to the repository root",
                    "required": True,
                },
                "content": {
                    "type": "string",
                    "description": "Content to write",
                    "required": True,
                },
            },
            handler=self._codebase.write_file,
        )

        registry.register(
            name="edit_file",
            description=(
                "Make a targeted edit by replacing one exact, unique occurrence of old_text. "
                "Prefer this to rewriting whole files."
            ),
            parameters={
                "path": {
                    "type": "string",
                    "description": "Path to the file, relative to the repository root",
                    "required": True,
                },
                "old_text": {
                    "type": "string",
                    "description": "Exact text to replace (must be unique in the file)",
                    "required": True,
                },
                "new_text": {
                    "type": "string",
                    "description": "Replacement text",
                    "required": True,
                },
            },
            handler=self._codebase.edit_file,
        )

    def _register_build_tools(self, registry: ToolRegistry) -> None:
        registry.register(
            name="run_command",
            description=(
                "Run a shell command in the repository directory. Only these commands are "
                f"allowed: {self._validator.policy.describe_allowlist()}."
            ),
            parameters={
                "command": {
                    "type": "string",
                    "description": "The command to run",
                    "required": True,
                },
            },
            handler=self._run_command,
        )

        registry.register(
            name="run_build",
            description="Run the project's configured build command.",
            parameters={
                "args": {
                    "type": "string",
                    "description": "Additional arguments for the build command",
                    "required": False,
                    "default": "",
                },
            },
            handler=self._run_build,
        )

        registry.register(
            name="run_tests",
            description="Run the project's configured test command.",
            parameters={
                "args": {
                    "type": "string",
                    "description": "Additional arguments (e.g. a test file or pattern)",
                    "required": False,
                    "default": "",
                },
            },
            handler=self._run_tests,
        )

    def _register_git_tools(self, registry: ToolRegistry) -> None:
        registry.register(
            name="git_status",
            description="Show the git status: branch plus modified, staged and untracked files.",
            parameters={},
            handler=self._git_status,
        )

        registry.register(
            name="git_diff",
            description="Show the git diff of staged or unstaged changes, or against a ref.",
            parameters={
                "staged": {
                    "type": "boolean",
                    "description": "Show staged changes only (--cached)",
                    "required": False,
                    "default": False,
                },
                "ref": {
                    "type": "string",
                    "description": "Commit or branch to diff against",
                    "required": False,
                    "default": "",
                },
                "path": {
                    "type": "string",
                    "description": "Limit the diff to this path",
                    "required": False,
                    "default": "",
                },
            },
            handler=self._git_diff,
        )

        registry.register(
            name="git_log",
            description="Show git commit history.",
            parameters={
                "count": {
                    "type": "integer",
                    "description": "Number of commits (default: 10)",
                    "required": False,
                    "default": 10,
                },
                "path": {
                    "type": "string",
                    "description": "Show history for this path only",
                    "required": False,
                    "default": "",
                },
                "format": {
                    "type": "string",
                    "description": "Output format (default: oneline)",
                    "enum": ["oneline", "short", "medium", "full"],
                    "required": False,
                    "default": "oneline",
                },
            },
            handler=self._git.log,
        )

        registry.register(
            name="create_branch",
            description="Create a new git branch and switch to it. The name is sanitized.",
            parameters={
                "name": {
                    "type": "string",
                    "description": "Branch name",
                    "required": True,
                },
                "from": {
                    "type": "string",
                    "description": "Base branch or commit (default: current HEAD)",
                    "required": False,
                    "default": "",
                },
            },
            handler=self._create_branch,
        )

        registry.register(
            name="commit",
            description="Stage files and create a git commit.",
            parameters={
                "message": {
                    "type": "string",
                    "description": "Commit message",
                    "required": True,
                },
                "files": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Files to stage (default: all changes)",
                    "required": False,
                },
            },
            handler=self._commit,
        )

        registry.register(
            name="push",
            description="Push the current branch to origin.",
            parameters={
                "set_upstream": {
                    "type": "boolean",
                    "description": "Set upstream tracking with -u (default: true)",
                    "required": False,
                    "default": True,
                },
            },
            handler=self._git.push,
        )

        registry.register(
            name="create_pr",
            description="Create a GitHub pull request for the current branch.",
            parameters={
                "title": {
                    "type": "string",
                    "description": "Pull request title",
                    "required": True,
                },
                "body": {
                    "type": "string",
                    "description": "Pull request description",
                    "required": True,
                },
                "base": {
                    "type": "string",
                    "description": "Branch to merge into (default: repository default)",
                    "required": False,
                    "default": "",
                },
                "draft": {
                    "type": "boolean",
                    "description": "Create as a draft (default: false)",
                    "required": False,
                    "default": False,
                },
            },
            handler=self._create_pr,
        )

        registry.register(
            name="get_pr",
            description=(
                "Get a GitHub pull request's title, description and diff. "
                "Use this to review a PR given its URL or number."
            ),
            parameters={
                "url": {
                    "type": "string",
                    "description": "PR URL (https://github.com/owner/repo/pull/123) or number",
                    "required": True,
                },
            },
            handler=self._get_pr,
        )

    def _register_intelligence_tools(self, registry: ToolRegistry) -> None:
        registry.register(
            name="get_guidelines",
            description="Load the project's guidelines (CLAUDE.md, CONTRIBUTING.md or the configured file).",
            parameters={},
            handler=self._get_guidelines,
        )

        registry.register(
            name="find_tests",
            description="Find the test files associated with a source file.",
            parameters={
                "source_file": {
                    "type": "string",
                    "description": "Source file path",
                    "required": True,
                },
            },
            handler=self._find_tests,
        )

        registry.register(
            name="analyze_failures",
            description="Analyze build or test output and summarize the failures.",
            parameters={
                "output": {
                    "type": "string",
                    "description": "Build or test output to analyze",
                    "required": True,
                },
            },
            handler=self._analyze_failures,
        )

    # Handlers

    def _read_file(self, path: str, start_line: int = 0, end_line: int = 0) -> str:
        return self._codebase.read_file(path, start_line, end_line)

    def _list_files(self, pattern: str) -> str:
        files = self._codebase.list_files(pattern)
        if not files:
            return f"No files found matching pattern: {pattern}"
        return f"Found {len(files)} files:\n" + "\n".join(files)

    def _search_code(
        self,
        pattern: str,
        path: str = "",
        case_sensitive: bool = False,
        max_results: int = 50,
    ) -> str:
        matches = self._codebase.search_code(pattern, path, case_sensitive, max_results)
        if not matches:
            return f"No matches found for pattern: {pattern}"
        return f"Found {len(matches)} matches:\n" + "\n".join(str(m) for m in matches)

    def _get_tree(self, path: str = "", max_depth: int = 3) -> str:
        return self._codebase.get_tree(path, max_depth) or "[Empty directory]"

    async def _run_command(self, command: str) -> str:
        verdict = self._validator.validate(command)
        if not verdict:
            raise CommandRejected(command, verdict.reason)
        result = await self._runner.run(command)
        return result.format()

    async def _run_build(self, args: str = "") -> str:
        return (await self._runner.run_build(args)).format()

    async def _run_tests(self, args: str = "") -> str:
        return (await self._runner.run_tests(args)).format()

    async def _git_status(self) -> str:
        return await self._git.status() or "Working tree clean"

    async def _git_diff(self, staged: bool = False, ref: str = "", path: str = "") -> str:
        return await self._git.diff(staged, ref, path) or "No changes"

    async def _create_branch(self, name: str, **kwargs: str) -> str:
        branch = await self._git.create_branch(name, kwargs.get("from", ""))
        return f"Created and switched to branch: {branch}"

    async def _commit(self, message: str, files: list[str] | None = None) -> str:
        if files is not None and not all(isinstance(f, str) for f in files):
            raise ValueError("files must be a list of strings")
        output = await self._git.commit(message, files)
        return output or f"Committed: {message}"

    async def _create_pr(self, title: str, body: str, base: str = "", draft: bool = False) -> str:
        pr = await self._github.create_pr(title, body, base, draft)
        return pr.format()

    async def _get_pr(self, url: str) -> str:
        pr = await self._github.get_pr(url.strip())
        return pr.format()

    def _get_guidelines(self) -> str:
        content = load_guidelines(self._codebase.root, self._guidelines_file)
        return content or "No guidelines file found in repository."

    def _find_tests(self, source_file: str) -> str:
        tests = self._codebase.find_tests(source_file)
        if not tests:
            return f"No test files found for: {source_file}"
        return "Found test files:\n" + "\n".join(tests)

    def _analyze_failures(self, output: str) -> str:
        return analyze_output(output).summary()


def build_registry(
    repo_path: Path,
    validator: CommandValidator,
    runner: CommandRunner | None = None,
    git: GitOperations | None = None,
    github: GitHub | None = None,
    github_token: str | None = None,
    guidelines_file: str = "",
) -> ToolRegistry:
    """Create a registry with the full repository catalog, checked for completeness."""
    tools = RepositoryTools(
        codebase=Codebase(repo_path),
        validator=validator,
        runner=runner or CommandRunner(repo_path),
        git=git or GitOperations(repo_path),
        github=github or GitHub(repo_path, token=github_token),
        guidelines_file=guidelines_file,
    )

    registry = ToolRegistry()
    tools.register_all(registry)
    registry.validate()
    logger.info(f"Registered {len(registry.list_tools())} tools for {repo_path}")
    return registry

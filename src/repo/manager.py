"""Repository preparation for local and sandbox (cloned) modes."""

import logging
from pathlib import Path
from typing import Protocol

from config.settings import Settings
from src.tools.git import GitError, GitOperations, run_cli

logger = logging.getLogger(__name__)


class RepoManager(Protocol):
    mode: str

    @property
    def repo_path(self) -> Path:
        ...

    async def ensure_ready(self) -> Path:
        """Prepare the working tree and return its path."""
        ...

    async def sync(self) -> None:
        ...


class LocalRepo:
    """An existing working tree on disk."""

    mode = "local"

    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser().resolve()

    @property
    def repo_path(self) -> Path:
        return self._path

    async def ensure_ready(self) -> Path:
        if not self._path.exists():
            raise GitError(f"repository path does not exist: {self._path}")
        if not self._path.is_dir():
            raise GitError(f"repository path is not a directory: {self._path}")
        if not (self._path / ".git").exists():
            raise GitError(f"not a git repository (missing .git): {self._path}")
        return self._path

    async def sync(self) -> None:
        await GitOperations(self._path).fetch()


def _strip_remote_prefix(repo: str) -> str:
    for prefix in ("https://", "http://", "git@"):
        repo = repo.removeprefix(prefix)
    return repo.replace("github.com:", "github.com/")


def extract_repo_name(repo: str) -> str:
    """'owner/name', a GitHub URL or an SSH remote -> 'name'."""
    repo = _strip_remote_prefix(repo).removesuffix(".git").rstrip("/")
    return repo.rsplit("/", 1)[-1]


def build_clone_url(repo: str, token: str | None) -> str:
    """Authenticated HTTPS clone URL for a GitHub repository."""
    repo = _strip_remote_prefix(repo)
    if not repo.startswith("github.com/") and repo.count("/") == 1:
        repo = f"github.com/{repo}"
    if token:
        return f"https://{token}@{repo}"
    return f"https://{repo}"


class SandboxRepo:
    """A clone of a GitHub repository inside the workspace directory."""

    mode = "sandbox"

    def __init__(self, github_repo: str, token: str | None, workspace_path: Path, timeout: float | None = None) -> None:
        if not github_repo:
            raise ValueError("sandbox mode requires github_repo")
        self._github_repo = github_repo
        self._token = token
        self._workspace = Path(workspace_path).expanduser().resolve()
        self._path = self._workspace / extract_repo_name(github_repo)
        self._timeout = timeout

    @property
    def repo_path(self) -> Path:
        return self._path

    async def ensure_ready(self) -> Path:
        self._workspace.mkdir(parents=True, exist_ok=True)

        if (self._path / ".git").exists():
            await self.sync()
            return self._path

        logger.info(f"Cloning {self._github_repo} into {self._path}")
        try:
            await run_cli(
                "git",
                ["clone", build_clone_url(self._github_repo, self._token), str(self._path)],
                cwd=self._workspace,
                timeout=self._timeout or 600,
            )
        except GitError as e:
            # The message may echo the clone URL
            message = str(e).replace(self._token, "***") if self._token else str(e)
            raise GitError(message) from None
        return self._path

    async def sync(self) -> None:
        """Fetch, check out the default branch and fast-forward it."""
        git = GitOperations(self._path, timeout=self._timeout)
        await git.fetch()
        branch = await git.default_branch()
        await run_cli("git", ["checkout", branch], cwd=self._path, timeout=self._timeout or 120)
        await run_cli("git", ["pull", "origin", branch], cwd=self._path, timeout=self._timeout or 120)
        logger.info(f"Synced {self._path} to origin/{branch}")


def create_repo_manager(config: Settings) -> LocalRepo | SandboxRepo:
    """Build the repository manager for the configured mode."""
    if config.repo_mode == "local":
        return LocalRepo(config.repo_path)
    if config.repo_mode == "sandbox":
        return SandboxRepo(config.github_repo or "", config.github_token, config.workspace_path)
    raise ValueError(f"Unknown repository mode: {config.repo_mode}")

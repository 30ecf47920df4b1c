"""Version-control operations through the git and gh command-line tools."""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from config.settings import settings
from src.tools.runner import kill_process_group
from src.tools.sandbox import sanitize_branch_name, sanitize_commit_message

logger = logging.getLogger(__name__)

LOG_FORMATS = {
    "oneline": "--oneline",
    "short": "--format=short",
    "medium": "--format=medium",
    "full": "--format=full",
}

PR_FIELDS = "number,title,url,state,headRefName,baseRefName,body,createdAt,author"
MAX_PR_DIFF_CHARS = 20000

# The userinfo part of https://<token>@host remotes
_URL_CREDENTIALS = re.compile(r"(https?://)[^/\s@]+@")


class GitError(RuntimeError):
    """A git or gh invocation failed."""


def redact_credentials(text: str) -> str:
    """Mask credentials embedded in remote URLs."""
    return _URL_CREDENTIALS.sub(r"\1***@", text)


async def run_cli(
    program: str,
    args: list[str],
    cwd: Path,
    timeout: float,
    env: dict[str, str] | None = None,
) -> tuple[str, str]:
    """Run a CLI without a shell; returns (stdout, stderr) or raises GitError."""
    command_line = redact_credentials(f"{program} {' '.join(args)}")
    logger.debug(f"Running {command_line}")

    try:
        process = await asyncio.create_subprocess_exec(
            program,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
            start_new_session=True,
        )
    except FileNotFoundError as e:
        raise GitError(f"{program} is not installed") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        kill_process_group(process)
        await process.wait()
        raise GitError(f"{program} command timed out")
    except asyncio.CancelledError:
        kill_process_group(process)
        raise

    out = stdout.decode("utf-8", errors="replace")
    err = stderr.decode("utf-8", errors="replace")
    if process.returncode != 0:
        detail = redact_credentials(err.strip() or out.strip())
        raise GitError(f"{command_line} failed: {detail}")
    return out, err


class GitOperations:
    """Git operations for one working tree."""

    def __init__(
        self,
        repo_path: Path,
        timeout: float | None = None,
        commit_trailer: str | None = None,
    ) -> None:
        self._repo_path = Path(repo_path)
        self._timeout = timeout or settings.git_timeout
        self._commit_trailer = settings.commit_trailer if commit_trailer is None else commit_trailer

    async def _git(self, *args: str) -> str:
        stdout, _ = await run_cli("git", list(args), self._repo_path, self._timeout)
        return stdout

    async def status(self) -> str:
        return await self._git("status", "--short", "--branch")

    async def diff(self, staged: bool = False, ref: str = "", path: str = "") -> str:
        args = ["diff"]
        if staged:
            args.append("--cached")
        if ref:
            args.append(ref)
        if path:
            args.extend(["--", path])
        return await self._git(*args)

    async def log(self, count: int = 10, path: str = "", format: str = "oneline") -> str:
        if count <= 0:
            count = 10
        args = ["log", f"-n{count}", LOG_FORMATS.get(format, "--oneline")]
        if path:
            args.extend(["--", path])
        return await self._git(*args)

    async def create_branch(self, name: str, from_ref: str = "") -> str:
        """Create a branch from the sanitized name and switch to it."""
        branch = sanitize_branch_name(name)
        if not branch:
            raise GitError("invalid branch name")

        args = ["checkout", "-b", branch]
        if from_ref:
            args.append(from_ref)
        await self._git(*args)
        logger.info(f"Created branch {branch}")
        return branch

    async def commit(self, message: str, files: list[str] | None = None) -> str:
        """Stage files (all changes when none are given) and commit."""
        message = sanitize_commit_message(message).strip()
        if not message:
            raise GitError("empty commit message")

        try:
            if files:
                await self._git("add", "--", *files)
            else:
                await self._git("add", "-A")
        except GitError as e:
            raise GitError(f"failed to stage files: {e}") from e

        if self._commit_trailer:
            message = f"{message}\n\n{self._commit_trailer}"

        output = await self._git("commit", "-m", message)
        logger.info(f"Committed: {message.splitlines()[0]}")
        return output.strip()

    async def push(self, set_upstream: bool = True) -> str:
        """Push the current branch to origin."""
        args = ["push"]
        branch = await self.current_branch()
        if set_upstream:
            args.extend(["-u", "origin", branch])
        await self._git(*args)
        logger.info(f"Pushed {branch}")
        return f"Pushed {branch} to origin"

    async def current_branch(self) -> str:
        return (await self._git("rev-parse", "--abbrev-ref", "HEAD")).strip()

    async def default_branch(self) -> str:
        """Default branch from origin/HEAD, falling back to main or master."""
        try:
            output = await self._git("symbolic-ref", "refs/remotes/origin/HEAD", "--short")
            return output.strip().removeprefix("origin/")
        except GitError:
            pass

        for candidate in ("main", "master"):
            try:
                await self._git("show-ref", "--verify", "--quiet", f"refs/remotes/origin/{candidate}")
                return candidate
            except GitError:
                continue
        return "main"

    async def has_uncommitted_changes(self) -> bool:
        return bool((await self._git("status", "--porcelain")).strip())

    async def fetch(self) -> None:
        await self._git("fetch", "--all")


@dataclass
class PullRequest:
    """Pull request metadata as reported by gh."""

    number: int
    title: str
    url: str
    state: str = ""
    head_ref: str = ""
    base_ref: str = ""
    body: str = ""
    created_at: str = ""
    author: str = ""
    diff: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "PullRequest":
        author = data.get("author") or ""
        if isinstance(author, dict):
            author = author.get("login", "")
        return cls(
            number=int(data.get("number", 0)),
            title=data.get("title", ""),
            url=data.get("url", ""),
            state=data.get("state", ""),
            head_ref=data.get("headRefName", ""),
            base_ref=data.get("baseRefName", ""),
            body=data.get("body", ""),
            created_at=data.get("createdAt", ""),
            author=author,
        )

    def format(self) -> str:
        lines = [
            f"#{self.number}: {self.title}",
            f"URL: {self.url}",
            f"State: {self.state}",
            f"Branch: {self.head_ref} → {self.base_ref}",
        ]
        if self.author:
            lines.append(f"Author: {self.author}")
        if self.body:
            lines.extend(["", self.body])
        if self.diff:
            diff = self.diff
            if len(diff) > MAX_PR_DIFF_CHARS:
                diff = diff[:MAX_PR_DIFF_CHARS] + f"\n... (truncated, {len(self.diff)} total chars)"
            lines.extend(["", "Diff:", diff])
        return "\n".join(lines)


class GitHub:
    """Pull request operations through the gh CLI."""

    def __init__(self, repo_path: Path, token: str | None = None, timeout: float | None = None) -> None:
        self._repo_path = Path(repo_path)
        self._token = token
        self._timeout = timeout or settings.git_timeout

    async def _gh(self, *args: str) -> str:
        env = None
        if self._token:
            env = {**os.environ, "GH_TOKEN": self._token}
        stdout, _ = await run_cli("gh", list(args), self._repo_path, self._timeout, env=env)
        return stdout

    async def create_pr(self, title: str, body: str, base: str = "", draft: bool = False) -> PullRequest:
        args = ["pr", "create", "--title", title, "--body", body]
        if base:
            args.extend(["--base", base])
        if draft:
            args.append("--draft")

        # gh prints the new PR's URL
        url = (await self._gh(*args)).strip().splitlines()[-1]
        logger.info(f"Created pull request {url}")

        try:
            return await self._view(url)
        except (GitError, ValueError) as e:
            logger.warning(f"Could not load details for {url}: {e}")
            return PullRequest(number=_number_from_url(url), title=title, url=url)

    async def get_pr(self, ref: str | int, include_diff: bool = True) -> PullRequest:
        """Look up a pull request by number or URL."""
        pr = await self._view(str(ref))
        if include_diff:
            pr.diff = await self._gh("pr", "diff", str(ref))
        return pr

    async def list_prs(self, state: str = "open", limit: int = 10) -> list[PullRequest]:
        output = await self._gh(
            "pr", "list",
            "--state", state or "open",
            "--limit", str(limit if limit > 0 else 10),
            "--json", PR_FIELDS,
        )
        return [PullRequest.from_json(item) for item in json.loads(output or "[]")]

    async def check_auth(self) -> None:
        """Raise GitError when gh is missing or not authenticated."""
        await self._gh("auth", "status")

    async def _view(self, ref: str) -> PullRequest:
        output = await self._gh("pr", "view", ref, "--json", PR_FIELDS)
        return PullRequest.from_json(json.loads(output))


def _number_from_url(url: str) -> int:
    tail = url.rstrip("/").rsplit("/", 1)[-1]
    return int(tail) if tail.isdigit() else 0

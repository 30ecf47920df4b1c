"""Shell command execution in the repository directory."""

import asyncio
import logging
import os
import shlex
import signal
import time
from dataclasses import dataclass
from pathlib import Path

from config.settings import settings

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class CommandResult:
    """Result from a shell command execution."""

    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration: float
    timed_out: bool = False
    truncated: bool = False

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def combined_output(self) -> str:
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr

    def format(self) -> str:
        """Render the result as the text fed back to the model."""
        lines = [f"$ {self.command}"]

        if self.stdout:
            lines.append(self.stdout.rstrip("\n"))

        if self.stderr:
            lines.append("STDERR:")
            lines.append(self.stderr.rstrip("\n"))

        if self.truncated:
            lines.append("[Output truncated]")

        if self.timed_out:
            lines.append("[Command timed out]")
        elif self.exit_code != 0:
            lines.append(f"[Exit code: {self.exit_code}]")

        lines.append(f"[Duration: {self.duration:.2f}s]")
        return "\n".join(lines)


class _CappedBuffer:
    """Keeps the first `limit` bytes written and counts the rest."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._data = bytearray()
        self.discarded = 0

    def write(self, chunk: bytes) -> None:
        room = self._limit - len(self._data)
        if room > 0:
            self._data += chunk[:room]
        self.discarded += max(0, len(chunk) - max(room, 0))

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")


async def _drain(stream: asyncio.StreamReader, buffer: _CappedBuffer) -> None:
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        buffer.write(chunk)


def kill_process_group(process: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class CommandRunner:
    """
    Runs shell commands in the repository directory.

    Each command gets its own process group so a timeout or cancellation
    can kill everything it spawned. Stdout and stderr are read concurrently
    and capped; bytes past the cap are read and dropped so the child never
    blocks on a full pipe.
    """

    def __init__(
        self,
        repo_path: Path,
        timeout: float | None = None,
        max_output_bytes: int | None = None,
        build_cmd: str | None = None,
        test_cmd: str | None = None,
    ) -> None:
        self._repo_path = Path(repo_path)
        self._timeout = timeout or settings.command_timeout
        self._max_output_bytes = max_output_bytes or settings.max_output_bytes
        self._build_cmd = build_cmd or settings.build_cmd
        self._test_cmd = test_cmd or settings.test_cmd

    @property
    def repo_path(self) -> Path:
        return self._repo_path

    async def run(self, command: str, timeout: float | None = None) -> CommandResult:
        """
        Execute a command through the shell.

        Args:
            command: Shell command line, already validated by the caller
            timeout: Timeout in seconds (defaults to settings)

        Returns:
            CommandResult; a non-zero exit or a timeout is reported, not raised
        """
        timeout = timeout or self._timeout
        logger.info(f"Executing command: {command}")

        start = time.monotonic()
        process = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._repo_path,
            env={**os.environ, "LANG": "C.UTF-8"},
            start_new_session=True,
        )

        stdout = _CappedBuffer(self._max_output_bytes)
        stderr = _CappedBuffer(self._max_output_bytes)

        async def communicate() -> int:
            await asyncio.gather(
                _drain(process.stdout, stdout),
                _drain(process.stderr, stderr),
            )
            return await process.wait()

        timed_out = False
        try:
            exit_code = await asyncio.wait_for(communicate(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Command timed out after {timeout}s: {command}")
            kill_process_group(process)
            await process.wait()
            timed_out = True
            exit_code = -1
        except asyncio.CancelledError:
            logger.info(f"Command cancelled, killing process group: {command}")
            kill_process_group(process)
            raise

        return CommandResult(
            command=command,
            exit_code=exit_code,
            stdout=stdout.text(),
            stderr=stderr.text(),
            duration=time.monotonic() - start,
            timed_out=timed_out,
            truncated=bool(stdout.discarded or stderr.discarded),
        )

    async def run_build(self, args: str = "") -> CommandResult:
        """Run the configured build command with extra model-supplied arguments."""
        return await self.run(self._with_args(self._build_cmd, args))

    async def run_tests(self, args: str = "") -> CommandResult:
        """Run the configured test command with extra model-supplied arguments."""
        return await self.run(self._with_args(self._test_cmd, args))

    @staticmethod
    def _with_args(base: str, args: str) -> str:
        # Raises ValueError on unbalanced quotes
        extra = [shlex.quote(arg) for arg in shlex.split(args or "")]
        return " ".join([base, *extra])

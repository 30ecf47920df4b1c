"""Tests for shell command execution."""

import asyncio
import time

import pytest

from src.tools.runner import CommandResult, CommandRunner


@pytest.fixture
def runner(tmp_path) -> CommandRunner:
    return CommandRunner(tmp_path, timeout=10, max_output_bytes=1024)


def test_captures_stdout_and_exit_code(runner):
    result = asyncio.run(runner.run("echo hello"))

    assert result.exit_code == 0
    assert result.stdout == "hello\n"
    assert result.stderr == ""
    assert result.is_success
    assert not result.timed_out
    assert result.duration >= 0


def test_stderr_captured_separately(runner):
    result = asyncio.run(runner.run("echo out; echo err >&2"))

    assert result.stdout == "out\n"
    assert result.stderr == "err\n"


def test_non_zero_exit_is_reported_not_raised(runner):
    result = asyncio.run(runner.run("exit 3"))

    assert result.exit_code == 3
    assert not result.is_success
    assert "[Exit code: 3]" in result.format()


def test_runs_in_repository_directory(runner, tmp_path):
    result = asyncio.run(runner.run("pwd"))
    assert result.stdout.strip() == str(tmp_path.resolve())


def test_output_capped(runner):
    result = asyncio.run(runner.run("head -c 5000 /dev/zero | tr '\\0' 'x'"))

    assert len(result.stdout) == 1024
    assert result.truncated
    assert result.exit_code == 0
    assert "[Output truncated]" in result.format()


def test_timeout_kills_process_and_keeps_partial_output(tmp_path):
    runner = CommandRunner(tmp_path, timeout=0.5)

    start = time.monotonic()
    result = asyncio.run(runner.run("echo started; sleep 30"))

    assert time.monotonic() - start < 10
    assert result.timed_out
    assert result.exit_code == -1
    assert result.stdout == "started\n"
    assert "[Command timed out]" in result.format()


def test_cancellation_kills_process(tmp_path):
    runner = CommandRunner(tmp_path, timeout=60)
    marker = tmp_path / "finished"

    async def scenario():
        task = asyncio.create_task(runner.run(f"sleep 2 && touch {marker}"))
        await asyncio.sleep(0.3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(2.5)

    asyncio.run(scenario())
    assert not marker.exists()


def test_build_and_test_commands_append_quoted_args(tmp_path):
    runner = CommandRunner(tmp_path, build_cmd="echo build", test_cmd="echo test")

    build = asyncio.run(runner.run_build("--target 'a b'"))
    tests = asyncio.run(runner.run_tests("; touch pwned"))

    assert build.stdout == "build --target a b\n"
    assert tests.stdout == "test ; touch pwned\n"
    assert not (tmp_path / "pwned").exists()


def test_unbalanced_quotes_in_args(tmp_path):
    runner = CommandRunner(tmp_path, build_cmd="echo build")
    with pytest.raises(ValueError):
        asyncio.run(runner.run_build("'unterminated"))


class TestCommandResult:
    def test_format_success(self):
        result = CommandResult(command="ls", exit_code=0, stdout="a\nb\n", stderr="", duration=0.5)
        assert result.format() == "$ ls\na\nb\n[Duration: 0.50s]"

    def test_format_with_stderr(self):
        result = CommandResult(command="x", exit_code=1, stdout="", stderr="boom\n", duration=1.0)
        assert result.format() == "$ x\nSTDERR:\nboom\n[Exit code: 1]\n[Duration: 1.00s]"

    def test_combined_output(self):
        result = CommandResult(command="x", exit_code=0, stdout="out", stderr="err", duration=0)
        assert result.combined_output == "out\nerr"

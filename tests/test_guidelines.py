"""Tests for guideline discovery and the system prompt."""

from src.agent.prompts import DEFAULT_SYSTEM_PROMPT, build_system_prompt, load_system_prompt
from src.tools.guidelines import TRUNCATION_NOTICE, load_guidelines, truncate_guidelines


def test_configured_file_wins(tmp_path):
    (tmp_path / "CLAUDE.md").write_text("claude rules")
    (tmp_path / "AGENTS.md").write_text("agent rules")

    assert load_guidelines(tmp_path, "AGENTS.md") == "agent rules"


def test_falls_back_to_candidates(tmp_path):
    (tmp_path / ".github").mkdir()
    (tmp_path / ".github" / "CONTRIBUTING.md").write_text("contributing")

    assert load_guidelines(tmp_path, "MISSING.md") == "contributing"


def test_empty_files_skipped(tmp_path):
    (tmp_path / "CLAUDE.md").write_text("  \n")
    (tmp_path / "CONTRIBUTING.md").write_text("real")

    assert load_guidelines(tmp_path) == "real"


def test_no_guidelines(tmp_path):
    assert load_guidelines(tmp_path) == ""


def test_path_outside_repository_ignored(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()
    (tmp_path / "secret.md").write_text("secret")

    assert load_guidelines(repo, "../secret.md") == ""


def test_truncate_short_content_unchanged():
    assert truncate_guidelines("short", 100) == "short"


def test_truncate_prefers_paragraph_break():
    content = "a" * 60 + "\n\n" + "b" * 60
    result = truncate_guidelines(content, 80)

    assert result == "a" * 60 + TRUNCATION_NOTICE


def test_truncate_hard_cut_when_break_too_early():
    content = "a\n\n" + "b" * 100
    result = truncate_guidelines(content, 50)

    assert result == content[:50] + TRUNCATION_NOTICE


def test_build_system_prompt():
    assert build_system_prompt("base", "") == "base"

    prompt = build_system_prompt("base", "use tabs")
    assert prompt.startswith("base\n\n## Project Guidelines")
    assert prompt.endswith("use tabs")


def test_load_system_prompt(tmp_path):
    (tmp_path / "CLAUDE.md").write_text("x" * 100)

    prompt = load_system_prompt(tmp_path, guidelines_file="CLAUDE.md", max_chars=10)

    assert prompt.startswith(DEFAULT_SYSTEM_PROMPT)
    assert "x" * 10 + TRUNCATION_NOTICE in prompt
    assert "x" * 11 not in prompt

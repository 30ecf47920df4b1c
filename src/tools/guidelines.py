"""Project guideline discovery (CLAUDE.md, CONTRIBUTING.md and friends)."""

import logging
from pathlib import Path

from src.tools.codebase import Codebase, PathEscapeError

logger = logging.getLogger(__name__)

GUIDELINE_CANDIDATES = (
    "CLAUDE.md",
    "claude.md",
    "CONTRIBUTING.md",
    "contributing.md",
    ".github/CONTRIBUTING.md",
)

TRUNCATION_NOTICE = "\n\n[Guidelines truncated due to length...]"


def load_guidelines(repo_path: Path, guidelines_file: str = "") -> str:
    """Return the first non-empty guidelines file, or "" when there is none."""
    codebase = Codebase(repo_path)
    candidates = [guidelines_file] if guidelines_file else []
    candidates.extend(c for c in GUIDELINE_CANDIDATES if c != guidelines_file)

    for candidate in candidates:
        try:
            path = codebase.resolve_path(candidate)
        except PathEscapeError:
            logger.warning(f"Ignoring guidelines path outside repository: {candidate}")
            continue
        if not path.is_file():
            continue
        content = path.read_text(encoding="utf-8", errors="replace")
        if content.strip():
            logger.debug(f"Loaded guidelines from {candidate}")
            return content

    return ""


def truncate_guidelines(content: str, max_chars: int) -> str:
    """Cut long guidelines, preferring a paragraph break in the back half."""
    if len(content) <= max_chars:
        return content

    truncated = content[:max_chars]
    boundary = truncated.rfind("\n\n")
    if boundary > max_chars // 2:
        truncated = truncated[:boundary]

    return truncated + TRUNCATION_NOTICE

"""File access scoped to the repository root: read, write, edit, search."""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

SKIP_DIRS = {"node_modules", "vendor", "target", "build", "__pycache__"}

TEXT_EXTENSIONS = {
    ".go", ".java", ".js", ".ts", ".tsx", ".jsx",
    ".py", ".rb", ".rs", ".c", ".cpp", ".h", ".hpp",
    ".cs", ".php", ".swift", ".kt", ".scala",
    ".html", ".css", ".scss", ".sass", ".less",
    ".json", ".yaml", ".yml", ".toml", ".xml", ".ini", ".cfg",
    ".md", ".txt", ".rst", ".adoc",
    ".sh", ".bash", ".zsh", ".fish",
    ".sql", ".graphql", ".proto",
    ".env", ".gitignore", ".dockerignore",
    ".mod", ".sum", ".lock",
    "",  # README, Makefile and friends
}

DEFAULT_MAX_RESULTS = 50
DEFAULT_TREE_DEPTH = 3


class PathEscapeError(ValueError):
    """A path resolved outside the repository root."""


@dataclass
class SearchMatch:
    """One line matching a code search."""

    path: str
    line_number: int
    line: str

    def __str__(self) -> str:
        return f"{self.path}:{self.line_number}: {self.line}"


def is_text_file(path: Path) -> bool:
    return path.suffix.lower() in TEXT_EXTENSIONS


class Codebase:
    """
    Read/write access to files under a repository root.

    Every path argument is relative to the root (a leading "/" is ignored)
    and must resolve inside it, symlinks included.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve_path(self, path: str) -> Path:
        """Resolve a repository-relative path, rejecting escapes."""
        candidate = (self._root / str(path).lstrip("/")).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise PathEscapeError(f"path escapes repository: {path}")
        return candidate

    def relative(self, path: Path) -> str:
        return path.relative_to(self._root).as_posix()

    def read_file(self, path: str, start_line: int = 0, end_line: int = 0) -> str:
        """
        Read a file, whole or by line range.

        Args:
            path: Repository-relative file path
            start_line: First line to include, 1-based (0 = from the start)
            end_line: Last line to include (0 = to the end)

        Returns:
            Raw content, or "%4d | line" numbered lines when a range is given
        """
        full_path = self.resolve_path(path)
        if not full_path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if full_path.is_dir():
            raise IsADirectoryError(f"Path is a directory: {path}")

        content = full_path.read_text(encoding="utf-8", errors="replace")
        if not start_line and not end_line:
            return content

        numbered = []
        for number, line in enumerate(content.splitlines(), start=1):
            if start_line > 0 and number < start_line:
                continue
            if end_line > 0 and number > end_line:
                break
            numbered.append(f"{number:4d} | {line}")
        return "\n".join(numbered)

    def write_file(self, path: str, content: str) -> str:
        """Write a file, creating parent directories as needed."""
        full_path = self.resolve_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(content, encoding="utf-8")
        logger.info(f"Wrote {len(content)} chars to {path}")
        return f"Wrote {len(content)} characters to {path}"

    def edit_file(self, path: str, old_text: str, new_text: str) -> str:
        """Replace one unique occurrence of old_text."""
        if not old_text:
            raise ValueError("old_text must not be empty")

        full_path = self.resolve_path(path)
        if not full_path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        content = full_path.read_text(encoding="utf-8")
        count = content.count(old_text)
        if count == 0:
            raise ValueError(f"old_text not found in {path}")
        if count > 1:
            raise ValueError(f"old_text found {count} times in {path} (must be unique)")

        full_path.write_text(content.replace(old_text, new_text, 1), encoding="utf-8")
        logger.info(f"Edited {path}")
        return f"Edited {path}"

    def list_files(self, pattern: str = "**/*") -> list[str]:
        """List files matching a glob pattern (supports **), sorted."""
        pattern = pattern.lstrip("/") or "**/*"
        if ".." in Path(pattern).parts:
            raise PathEscapeError(f"path escapes repository: {pattern}")

        files = []
        for match in self._root.glob(pattern):
            if not match.is_file():
                continue
            relative = self.relative(match)
            try:
                self.resolve_path(relative)
            except PathEscapeError:
                # Symlink pointing outside the repository
                continue
            files.append(relative)
        return sorted(files)

    def search_code(
        self,
        pattern: str,
        path: str = "",
        case_sensitive: bool = False,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[SearchMatch]:
        """Search text files for lines matching a regular expression."""
        if max_results <= 0:
            max_results = DEFAULT_MAX_RESULTS

        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            regex = re.compile(pattern, flags)
        except re.error as e:
            raise ValueError(f"invalid pattern: {e}") from e

        search_root = self.resolve_path(path) if path else self._root
        results: list[SearchMatch] = []

        for dirpath, dirnames, filenames in os.walk(search_root):
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d not in SKIP_DIRS
            )
            for filename in sorted(filenames):
                file_path = Path(dirpath) / filename
                if not is_text_file(file_path):
                    continue
                try:
                    with open(file_path, encoding="utf-8", errors="replace") as f:
                        for number, line in enumerate(f, start=1):
                            if regex.search(line):
                                results.append(
                                    SearchMatch(self.relative(file_path), number, line.strip())
                                )
                                if len(results) >= max_results:
                                    return results
                except OSError as e:
                    logger.debug(f"Skipping unreadable file {file_path}: {e}")

        return results

    def get_tree(self, path: str = "", max_depth: int = DEFAULT_TREE_DEPTH) -> str:
        """Render the directory structure with box-drawing connectors."""
        if max_depth <= 0:
            max_depth = DEFAULT_TREE_DEPTH

        root = self.resolve_path(path) if path else self._root
        if not root.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")

        lines: list[str] = []
        self._build_tree(lines, root, "", 0, max_depth)
        return "\n".join(lines)

    def _build_tree(self, lines: list[str], directory: Path, prefix: str, depth: int, max_depth: int) -> None:
        entries = [
            entry
            for entry in sorted(directory.iterdir(), key=lambda p: p.name)
            if not entry.name.startswith(".")
            and not (entry.is_dir() and entry.name in SKIP_DIRS)
        ]

        for i, entry in enumerate(entries):
            is_last = i == len(entries) - 1
            connector = "└── " if is_last else "├── "
            suffix = "/" if entry.is_dir() else ""
            lines.append(f"{prefix}{connector}{entry.name}{suffix}")

            if entry.is_dir() and depth < max_depth:
                extension = "    " if is_last else "│   "
                self._build_tree(lines, entry, prefix + extension, depth + 1, max_depth)

    def find_tests(self, source_file: str) -> list[str]:
        """Find test files conventionally paired with a source file."""
        source = Path(source_file.lstrip("/"))
        ext = source.suffix
        base = source.stem
        directory = source.parent.as_posix()
        prefix = "" if directory == "." else f"{directory}/"

        if ext == ".java":
            test_dir = directory.replace("main", "test", 1)
            test_prefix = "" if test_dir == "." else f"{test_dir}/"
            patterns = [
                f"{prefix}{base}Test.java",
                f"{test_prefix}{base}Test.java",
                f"**/{base}Test.java",
            ]
        elif ext == ".go":
            patterns = [f"{prefix}{base}_test.go", f"{prefix}*_test.go"]
        elif ext in (".js", ".ts", ".jsx", ".tsx"):
            patterns = [
                f"{prefix}{base}.test{ext}",
                f"{prefix}{base}.spec{ext}",
                f"{prefix}__tests__/{base}{ext}",
                f"**/__tests__/{base}.*",
                f"**/{base}.test.*",
                f"**/{base}.spec.*",
            ]
        elif ext == ".py":
            patterns = [
                f"{prefix}test_{base}.py",
                f"{prefix}{base}_test.py",
                f"**/test_{base}.py",
                f"**/{base}_test.py",
            ]
        else:
            patterns = [f"**/{base}*[Tt]est*"]

        found: list[str] = []
        for pattern in patterns:
            try:
                matches = self.list_files(pattern)
            except ValueError:
                continue
            for match in matches:
                if match not in found:
                    found.append(match)
        return found

"""Build and test output analysis: detect the tool and extract failures."""

import re
from dataclasses import dataclass, field

MAX_SUMMARY_ITEMS = 5


@dataclass
class BuildError:
    message: str
    file: str = ""
    line: int = 0
    column: int = 0
    kind: str = "error"


@dataclass
class TestFailure:
    __test__ = False  # not a pytest test class

    test_name: str
    file: str = ""
    line: int = 0
    message: str = ""
    expected: str = ""
    actual: str = ""


@dataclass
class AnalysisResult:
    """Failures extracted from a build or test run."""

    tool: str
    raw: str
    build_errors: list[BuildError] = field(default_factory=list)
    test_failures: list[TestFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.build_errors and not self.test_failures

    def summary(self) -> str:
        if self.success:
            return "Build/tests passed successfully."

        lines = [f"Detected: {self.tool}"]

        if self.build_errors:
            lines.append("Build Errors:")
            for i, error in enumerate(self.build_errors):
                if i >= MAX_SUMMARY_ITEMS:
                    lines.append(f"  ... and {len(self.build_errors) - i} more errors")
                    break
                location = ""
                if error.file:
                    location = f"{error.file}:{error.line}: " if error.line else f"{error.file}: "
                lines.append(f"  • {location}{error.message}")

        if self.test_failures:
            lines.append("Test Failures:")
            for i, failure in enumerate(self.test_failures):
                if i >= MAX_SUMMARY_ITEMS:
                    lines.append(f"  ... and {len(self.test_failures) - i} more failures")
                    break
                lines.append(f"  • {failure.test_name}")
                if failure.message:
                    lines.append(f"    {failure.message}")

        return "\n".join(lines)


def analyze_output(output: str) -> AnalysisResult:
    """Detect which tool produced the output and parse its failures."""
    if "test session starts" in output or "short test summary info" in output:
        return AnalysisResult("pytest", output, test_failures=_parse_pytest(output))
    if "BUILD FAILURE" in output or "[ERROR]" in output:
        return AnalysisResult("maven", output, build_errors=_parse_maven(output))
    if "FAILED" in output and "go test" in output:
        return AnalysisResult("go", output, test_failures=_parse_go_test(output))
    if "npm ERR!" in output:
        return AnalysisResult("npm", output, build_errors=_parse_npm(output))
    if "FAIL" in output and ("jest" in output or "vitest" in output):
        return AnalysisResult("jest", output, test_failures=_parse_jest(output))
    if "error:" in output and "cargo" in output:
        return AnalysisResult("cargo", output, build_errors=_parse_cargo(output))
    if "FAILURES!" in output or "Tests run:" in output:
        return AnalysisResult("junit", output, test_failures=_parse_junit(output))
    return AnalysisResult("generic", output, build_errors=_parse_generic(output))


_PYTEST_FAILED = re.compile(r"^(FAILED|ERROR) (\S+?)(?:::(\S+))?(?: - (.*))?$", re.MULTILINE)
_PYTEST_LOCATION = re.compile(r"^(\S+\.py):(\d+): (\w+)", re.MULTILINE)


def _parse_pytest(output: str) -> list[TestFailure]:
    locations = {m.group(1): int(m.group(2)) for m in _PYTEST_LOCATION.finditer(output)}
    failures = []
    for match in _PYTEST_FAILED.finditer(output):
        path, test = match.group(2), match.group(3)
        failures.append(
            TestFailure(
                test_name=f"{path}::{test}" if test else path,
                file=path,
                line=locations.get(path, 0),
                message=(match.group(4) or "").strip(),
            )
        )
    return failures


_MAVEN_ERROR = re.compile(r"\[ERROR\]\s+(/[^:\s]+):?\[?(\d+)?,?(\d+)?\]?\s*(.+)")


def _parse_maven(output: str) -> list[BuildError]:
    errors = []
    for match in _MAVEN_ERROR.finditer(output):
        errors.append(
            BuildError(
                message=match.group(4).strip(),
                file=match.group(1),
                line=int(match.group(2) or 0),
                column=int(match.group(3) or 0),
            )
        )
    return errors


_GO_FAIL = re.compile(r"--- FAIL: (\S+)")
_GO_LOCATION = re.compile(r"\s+(\S+\.go):(\d+):\s*(.+)")


def _parse_go_test(output: str) -> list[TestFailure]:
    failures: list[TestFailure] = []
    current_test = ""
    for line in output.splitlines():
        if match := _GO_FAIL.search(line):
            current_test = match.group(1)
        if not current_test:
            continue
        if match := _GO_LOCATION.match(line):
            failures.append(
                TestFailure(
                    test_name=current_test,
                    file=match.group(1),
                    line=int(match.group(2)),
                    message=match.group(3).strip(),
                )
            )
        elif failures:
            if "expected" in line:
                failures[-1].expected = line.strip()
            if "got" in line:
                failures[-1].actual = line.strip()
    return failures


_NPM_ERROR = re.compile(r"npm ERR!\s*(.+)")


def _parse_npm(output: str) -> list[BuildError]:
    return [
        BuildError(message=match.group(1).strip())
        for match in _NPM_ERROR.finditer(output)
        if not match.group(1).startswith(("code", "errno"))
    ]


_JEST_FAIL = re.compile(r"✕\s+(.+)")
_JEST_LOCATION = re.compile(r"at\s+\S+\s+\(([^:]+):(\d+):(\d+)\)")


def _parse_jest(output: str) -> list[TestFailure]:
    location = _JEST_LOCATION.search(output)
    failures = []
    for match in _JEST_FAIL.finditer(output):
        failure = TestFailure(test_name=match.group(1).strip())
        if location:
            failure.file = location.group(1)
            failure.line = int(location.group(2))
        failures.append(failure)
    return failures


_CARGO_ERROR = re.compile(r"error(?:\[E\d+\])?: (.+)\n\s+-->\s+([^:]+):(\d+):(\d+)")


def _parse_cargo(output: str) -> list[BuildError]:
    return [
        BuildError(
            message=match.group(1).strip(),
            file=match.group(2),
            line=int(match.group(3)),
            column=int(match.group(4)),
        )
        for match in _CARGO_ERROR.finditer(output)
    ]


_JUNIT_FAILED_RUN = re.compile(r"FAILURES!|Tests run:.*Failures: [1-9]")
_JUNIT_TEST = re.compile(r"(\w+)\((\w+)\).*FAILED")


def _parse_junit(output: str) -> list[TestFailure]:
    if not _JUNIT_FAILED_RUN.search(output):
        return []
    return [
        TestFailure(test_name=f"{match.group(2)}.{match.group(1)}")
        for match in _JUNIT_TEST.finditer(output)
    ]


_GENERIC_LOCATED = re.compile(r"([^:\s]+):(\d+):\s*error:\s*(.+)")
_GENERIC_MESSAGE = re.compile(r"(?i)(?:error|fatal):\s*(.+)")
_GENERIC_LIMIT = 10


def _parse_generic(output: str) -> list[BuildError]:
    errors = []
    for line in output.splitlines():
        if match := _GENERIC_LOCATED.search(line):
            errors.append(
                BuildError(
                    message=match.group(3).strip(),
                    file=match.group(1),
                    line=int(match.group(2)),
                )
            )
        elif match := _GENERIC_MESSAGE.search(line):
            errors.append(BuildError(message=match.group(1).strip()))
        if len(errors) >= _GENERIC_LIMIT:
            break
    return errors

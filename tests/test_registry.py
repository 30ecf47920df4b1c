"""Tests for tool registration and dispatch."""

import asyncio

import pytest

from src.tools.registry import (
    TOOL_CATALOG,
    CommandRejected,
    ToolArgumentError,
    ToolInvocation,
    ToolRegistry,
    UnknownToolError,
)


@pytest.fixture
def registry() -> ToolRegistry:
    registry = ToolRegistry()

    def echo(text: str, times: int = 1) -> str:
        return text * times

    async def slow_upper(text: str) -> str:
        await asyncio.sleep(0)
        return text.upper()

    def reject(command: str) -> str:
        raise CommandRejected(command, "command not allowed: rm")

    def explode() -> str:
        raise FileNotFoundError("File not found: missing.txt")

    registry.register(
        "echo",
        "Repeat text",
        {
            "text": {"type": "string", "description": "Text", "required": True},
            "times": {"type": "integer", "description": "Repetitions", "default": 1},
        },
        echo,
    )
    registry.register(
        "upper",
        "Uppercase text",
        {"text": {"type": "string", "description": "Text", "required": True}},
        slow_upper,
    )
    registry.register(
        "reject",
        "Always rejects",
        {"command": {"type": "string", "description": "Command", "required": True}},
        reject,
    )
    registry.register("explode", "Always fails", {}, explode)
    return registry


class TestExecute:
    def test_sync_handler(self, registry):
        assert asyncio.run(registry.execute("echo", {"text": "ab", "times": 2})) == "abab"

    def test_async_handler(self, registry):
        assert asyncio.run(registry.execute("upper", {"text": "ab"})) == "AB"

    def test_default_applied(self, registry):
        assert asyncio.run(registry.execute("echo", {"text": "ab"})) == "ab"

    def test_none_counts_as_absent(self, registry):
        assert asyncio.run(registry.execute("echo", {"text": "ab", "times": None})) == "ab"

    def test_unknown_tool(self, registry):
        with pytest.raises(UnknownToolError, match="Unknown tool: nope"):
            asyncio.run(registry.execute("nope", {}))

    def test_missing_required(self, registry):
        with pytest.raises(ToolArgumentError, match="Missing required parameter: text"):
            asyncio.run(registry.execute("echo", {}))

    def test_wrong_type(self, registry):
        with pytest.raises(ToolArgumentError, match="Invalid type for parameter times"):
            asyncio.run(registry.execute("echo", {"text": "a", "times": "2"}))

    def test_bool_is_not_integer(self, registry):
        with pytest.raises(ToolArgumentError):
            asyncio.run(registry.execute("echo", {"text": "a", "times": True}))

    def test_undecodable_arguments(self, registry):
        with pytest.raises(ToolArgumentError, match="not valid JSON"):
            asyncio.run(registry.execute("echo", '{"text": '))

    def test_non_object_arguments(self, registry):
        with pytest.raises(ToolArgumentError, match="expected a JSON object"):
            asyncio.run(registry.execute("echo", ["a"]))  # type: ignore[arg-type]

    def test_unknown_arguments_ignored(self, registry):
        assert asyncio.run(registry.execute("echo", {"text": "a", "extra": 1})) == "a"


class TestDispatch:
    def test_success(self, registry):
        result = asyncio.run(registry.dispatch(ToolInvocation("t1", "echo", {"text": "hi"})))

        assert result.invocation_id == "t1"
        assert result.output == "hi"
        assert not result.is_error

    def test_unknown_tool_is_error_result(self, registry):
        result = asyncio.run(registry.dispatch(ToolInvocation("t2", "nope", {})))

        assert result.is_error
        assert result.output == "Error: Unknown tool: nope"

    def test_rejection_is_error_result(self, registry, caplog):
        with caplog.at_level("INFO"):
            result = asyncio.run(
                registry.dispatch(ToolInvocation("t3", "reject", {"command": "rm -rf build"}))
            )

        assert result.is_error
        assert result.output == "Error: Command rejected: command not allowed: rm"
        assert not [r for r in caplog.records if r.levelname in ("WARNING", "ERROR")]

    def test_handler_failure_is_error_result(self, registry):
        result = asyncio.run(registry.dispatch(ToolInvocation("t4", "explode", {})))

        assert result.is_error
        assert result.output == "Error: File not found: missing.txt"

    def test_bad_arguments_are_error_result(self, registry):
        result = asyncio.run(registry.dispatch(ToolInvocation("t5", "echo", "not json")))

        assert result.is_error
        assert "not valid JSON" in result.output


class TestSchema:
    def test_openai_function_format(self, registry):
        schema = {s["function"]["name"]: s for s in registry.get_tools_schema()}
        echo = schema["echo"]

        assert echo["type"] == "function"
        params = echo["function"]["parameters"]
        assert params["type"] == "object"
        assert params["required"] == ["text"]
        assert params["properties"]["times"] == {"type": "integer", "description": "Repetitions"}

    def test_array_items_and_enum(self):
        registry = ToolRegistry()
        registry.register(
            "t",
            "d",
            {
                "files": {"type": "array", "items": {"type": "string"}},
                "state": {"type": "string", "enum": ["open", "closed"]},
            },
            lambda files=None, state="open": "",
        )
        props = registry.get_tools_schema()[0]["function"]["parameters"]["properties"]

        assert props["files"]["items"] == {"type": "string"}
        assert props["state"]["enum"] == ["open", "closed"]


class TestCatalog:
    def test_validate_reports_missing_and_unexpected(self, registry):
        with pytest.raises(ValueError, match="missing") as excinfo:
            registry.validate()
        assert "unexpected" in str(excinfo.value)
        assert "echo" in str(excinfo.value)

    def test_validate_accepts_exact_catalog(self):
        registry = ToolRegistry()
        for name in TOOL_CATALOG:
            registry.register(name, name, {}, lambda: "")
        registry.validate()

    def test_list_tools_in_catalog_order(self):
        registry = ToolRegistry()
        for name in reversed(TOOL_CATALOG):
            registry.register(name, name, {}, lambda: "")
        assert [t.name for t in registry.list_tools()] == list(TOOL_CATALOG)

    def test_catalog_has_twenty_tools(self):
        assert len(TOOL_CATALOG) == 20
        assert len(set(TOOL_CATALOG)) == 20

"""Tool registration and dispatch."""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# The fixed set of tools offered to the model, in presentation order.
TOOL_CATALOG: tuple[str, ...] = (
    # Code understanding
    "read_file",
    "list_files",
    "search_code",
    "get_tree",
    # Code modification
    "write_file",
    "edit_file",
    # Build and test
    "run_command",
    "run_build",
    "run_tests",
    # Version control
    "git_status",
    "git_diff",
    "git_log",
    "create_branch",
    "commit",
    "push",
    "create_pr",
    "get_pr",
    # Project intelligence
    "get_guidelines",
    "find_tests",
    "analyze_failures",
)

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


class ToolArgumentError(ValueError):
    """Tool arguments could not be decoded or did not match the parameter spec."""


class UnknownToolError(LookupError):
    """The model asked for a tool that is not registered."""


class CommandRejected(RuntimeError):
    """The command validator refused a shell command."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"Command rejected: {reason}")
        self.command = command
        self.reason = reason


@dataclass
class ToolDefinition:
    """Definition of a registered tool."""

    name: str
    description: str
    parameters: dict[str, Any]
    handler: Callable[..., Awaitable[str] | str]


@dataclass(frozen=True)
class ToolInvocation:
    """A model request to run one tool.

    `arguments` is the decoded JSON object, or the raw string when the model
    sent arguments that could not be decoded.
    """

    id: str
    name: str
    arguments: dict[str, Any] | str


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one ToolInvocation, fed back to the model."""

    invocation_id: str
    output: str
    is_error: bool = False


class ToolRegistry:
    """Registry mapping tool names to handlers."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any],
        handler: Callable[..., Awaitable[str] | str],
    ) -> None:
        """
        Register a new tool.

        Args:
            name: Unique tool name
            description: Tool description shown to the model
            parameters: Parameter spec, {name: {type, description, required, default, items}}
            handler: Sync or async function receiving the bound arguments
        """
        if name in self._tools:
            logger.warning(f"Overwriting existing tool: {name}")

        self._tools[name] = ToolDefinition(
            name=name,
            description=description,
            parameters=parameters,
            handler=handler,
        )
        logger.debug(f"Registered tool: {name}")

    def get_tool(self, name: str) -> ToolDefinition | None:
        """Get a tool definition by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[ToolDefinition]:
        """List registered tools, catalog tools first in catalog order."""
        order = {name: i for i, name in enumerate(TOOL_CATALOG)}
        return sorted(self._tools.values(), key=lambda t: order.get(t.name, len(order)))

    def validate(self, catalog: tuple[str, ...] = TOOL_CATALOG) -> None:
        """Check that the registry covers the catalog exactly."""
        missing = [name for name in catalog if name not in self._tools]
        extra = sorted(set(self._tools) - set(catalog))
        if missing or extra:
            raise ValueError(
                f"Tool registry does not match catalog (missing: {missing or 'none'}, "
                f"unexpected: {extra or 'none'})"
            )

    def bind_arguments(self, tool: ToolDefinition, arguments: dict[str, Any] | str | None) -> dict[str, Any]:
        """Check arguments against the tool's parameter spec and apply defaults."""
        if arguments is None:
            arguments = {}
        if isinstance(arguments, str):
            raise ToolArgumentError(f"Invalid arguments for {tool.name}: not valid JSON")
        if not isinstance(arguments, dict):
            raise ToolArgumentError(f"Invalid arguments for {tool.name}: expected a JSON object")

        final_args: dict[str, Any] = {}
        for param_name, param_spec in tool.parameters.items():
            if param_name in arguments and arguments[param_name] is not None:
                value = arguments[param_name]
                expected = param_spec.get("type", "string")
                if not _matches_type(value, expected):
                    raise ToolArgumentError(
                        f"Invalid type for parameter {param_name}: expected {expected}"
                    )
                final_args[param_name] = value
            elif param_spec.get("required", False):
                raise ToolArgumentError(f"Missing required parameter: {param_name}")
            elif "default" in param_spec:
                final_args[param_name] = param_spec["default"]

        return final_args

    async def execute(self, tool_name: str, arguments: dict[str, Any] | str | None) -> str:
        """
        Execute a tool by name.

        Raises:
            UnknownToolError: no such tool
            ToolArgumentError: arguments do not fit the parameter spec
            Exception: whatever the handler raises
        """
        tool = self._tools.get(tool_name)
        if not tool:
            raise UnknownToolError(f"Unknown tool: {tool_name}")

        final_args = self.bind_arguments(tool, arguments)

        result = tool.handler(**final_args)
        if inspect.isawaitable(result):
            result = await result
        return str(result)

    async def dispatch(self, invocation: ToolInvocation) -> ToolResult:
        """Execute an invocation, turning every failure into an error-flagged result."""
        logger.debug(f"Dispatching tool: {invocation.name} ({invocation.id})")

        try:
            output = await self.execute(invocation.name, invocation.arguments)
        except CommandRejected as e:
            logger.info(f"Rejected command: {e.command} - {e.reason}")
            return ToolResult(invocation.id, f"Error: {e}", is_error=True)
        except (UnknownToolError, ToolArgumentError) as e:
            logger.info(f"Bad tool request: {invocation.name} - {e}")
            return ToolResult(invocation.id, f"Error: {e}", is_error=True)
        except Exception as e:
            logger.warning(f"Tool execution failed: {invocation.name} - {e}")
            return ToolResult(invocation.id, f"Error: {e}", is_error=True)

        return ToolResult(invocation.id, output)

    def get_tools_schema(self) -> list[dict[str, Any]]:
        """
        Get tool schemas in OpenAI function-calling format.

        Returns:
            List of {"type": "function", "function": {...}} entries
        """
        schemas = []
        for tool in self.list_tools():
            properties = {}
            required = []

            for param_name, param_spec in tool.parameters.items():
                prop = {
                    "type": param_spec.get("type", "string"),
                    "description": param_spec.get("description", ""),
                }
                if "items" in param_spec:
                    prop["items"] = param_spec["items"]
                if "enum" in param_spec:
                    prop["enum"] = param_spec["enum"]
                properties[param_name] = prop
                if param_spec.get("required", False):
                    required.append(param_name)

            schemas.append({
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": {
                        "type": "object",
                        "properties": properties,
                        "required": required,
                    },
                },
            })

        return schemas


def _matches_type(value: Any, expected: str) -> bool:
    types = _JSON_TYPES.get(expected)
    if types is None:
        return True
    # bool is an int subclass; JSON keeps them apart
    if isinstance(value, bool) and expected != "boolean":
        return False
    return isinstance(value, types)

import builtins
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

import jsonschema
import mcp.types as types
import pydantic_core
from jsonschema.protocols import Validator
from pydantic import BaseModel
from typing_extensions import TypedDict, Unpack

from mcpwire.exceptions import (
    InvalidArgumentsError,
    InvalidParamsError,
    LifecycleError,
    PrimitiveError,
    ToolNotFoundError,
)
from mcpwire.registry import HandlerRegistry
from mcpwire.types import MESSAGE_ENCODING
from mcpwire.utils.mcp_func import MCPFunc

logger = logging.getLogger(__name__)


class Tool(ABC):
    """
    A named, callable action with a declared input schema.

    Tools are owned by the application. The server only keeps references to them, and calls
    execute() for every tools/call request addressed to the tool's name.

    execute() can be synchronous or asynchronous and may return:
    - a types.CallToolResult, used as is
    - str, wrapped in a text content block
    - dict, returned as structured content along with its JSON text
    - None, for an empty result
    - any other JSON serializable value, returned as JSON text

    An exception raised by execute() is an execution failure. It is reported back to the client
    as a result with isError=true, not as a protocol error.
    """

    name: str
    description: str | None
    input_schema: dict[str, Any]

    def __init__(self, name: str, description: str | None = None, input_schema: dict[str, Any] | None = None):
        self.name = name
        self.description = description
        self.input_schema = input_schema if input_schema is not None else {"type": "object"}

    @abstractmethod
    def execute(self, arguments: dict[str, Any]) -> Any | Awaitable[Any]:
        raise NotImplementedError("Subclasses must implement this method")

    def descriptor(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class FunctionTool(Tool):
    """
    A tool backed by a Python function. The name and description default to the function name and
    docstring, and the input schema is generated from the function's type annotations.

    Example:
        def add(a: float, b: float) -> float:
            '''Add two numbers'''
            return a + b

        server.tool.add(FunctionTool(add))
    """

    func: MCPFunc

    def __init__(self, func: Callable[..., Any], name: str | None = None, description: str | None = None):
        self.func = MCPFunc(func, name)
        super().__init__(self.func.name, description or self.func.doc, self.func.input_schema)

    async def execute(self, arguments: dict[str, Any]) -> Any:
        return await self.func.execute(arguments)


class ToolDefinition(TypedDict, total=False):
    """
    Optional overrides for function-backed tools.

    Attributes:
        name: Unique identifier for the tool. Defaults to the function name.
        description: Human-readable description. Defaults to the function docstring.
    """

    name: str | None
    description: str | None


class ToolManager:
    """
    ToolManager holds the tools exposed by a server, and implements the tools/list and tools/call
    handlers.

    Tools are kept in registration order and identified by their unique name. For more details, see:
    https://modelcontextprotocol.io/specification/2024-11-05/server/tools

    Tools use two error reporting mechanisms:
    1. Protocol errors: unknown tool (tool_not_found) and arguments not matching the input
       schema (invalid_params) are answered with an error response.
    2. Execution errors: a tool that fails while executing returns a result with isError=true.

    Example:
        @server.tool()
        def get_weather(location: str) -> str:
            '''Get current weather information for a location'''
            return f"Weather in {location}: 22C, Partly cloudy"

        # Or programmatically:
        server.tool.add(WeatherTool())
    """

    _registry: HandlerRegistry
    _tools: dict[str, tuple[Tool, Validator]]

    def __init__(self, registry: HandlerRegistry):
        """
        Args:
            registry: The handler registry to hook the tools/* handlers into.
        """
        self._registry = registry
        self._tools = {}
        self._hook_registry(registry)

    def _hook_registry(self, registry: HandlerRegistry) -> None:
        registry.register("tools/list", self._list_handler)
        registry.register("tools/call", self._call_handler)

    def __call__(self, **kwargs: Unpack[ToolDefinition]) -> Callable[[Callable[..., Any]], Tool]:
        """Decorator to add a function as a tool at the time of its definition.

        Example:
            @server.tool(description="Multiply two numbers")
            def multiply(a: float, b: float) -> float:
                return a * b
        """
        return partial(self.add, **kwargs)

    def add(self, tool: Tool | Callable[..., Any], **kwargs: Unpack[ToolDefinition]) -> Tool:
        """Add a tool. Plain functions are wrapped in a FunctionTool.

        Args:
            tool: The tool, or a function to wrap.
            **kwargs: Name and description overrides, for functions only.

        Returns:
            The added tool.

        Raises:
            PrimitiveError: If a tool with the same name is already registered, or the input schema
                is not a valid JSON schema.
            LifecycleError: If the server is already connected.
            MCPFuncError: If the function cannot be used as a tool.
        """
        if self._registry.frozen:
            raise LifecycleError("Cannot add tools after the server is connected")

        if not isinstance(tool, Tool):
            tool = FunctionTool(tool, kwargs.get("name"), kwargs.get("description"))

        if tool.name in self._tools:
            raise PrimitiveError(f"Tool {tool.name} already registered")

        validator_class = jsonschema.validators.validator_for(tool.input_schema)
        try:
            validator_class.check_schema(tool.input_schema)
        except jsonschema.SchemaError as e:
            raise PrimitiveError(f"Tool {tool.name} has an invalid input schema: {e.message}") from e

        self._tools[tool.name] = (tool, validator_class(tool.input_schema))
        logger.debug("Tool %s added", tool.name)

        return tool

    def remove(self, name: str) -> Tool:
        """Remove a tool by name.

        Raises:
            ToolNotFoundError: If the tool is not found.
            LifecycleError: If the server is already connected.
        """
        if self._registry.frozen:
            raise LifecycleError("Cannot remove tools after the server is connected")

        if name not in self._tools:
            raise ToolNotFoundError(f"Unknown tool: {name}")

        logger.debug("Removing tool %s", name)
        return self._tools.pop(name)[0]

    def get(self, name: str) -> Tool | None:
        entry = self._tools.get(name)
        return entry[0] if entry else None

    def list(self) -> builtins.list[types.Tool]:
        """List the descriptors of all tools, in registration order."""
        return [tool.descriptor() for tool, _ in self._tools.values()]

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> types.CallToolResult:
        """Execute a tool by name.

        Args:
            name: The unique name of the tool to call.
            arguments: Tool arguments. Must conform to the tool's input schema.

        Returns:
            The tool result. Execution failures are returned with isError=true.

        Raises:
            ToolNotFoundError: If the tool is not found.
            InvalidArgumentsError: If the arguments do not match the input schema.
        """
        if name not in self._tools:
            raise ToolNotFoundError(f"Unknown tool: {name}", {"name": name})

        tool, validator = self._tools[name]
        arguments = arguments or {}

        error = jsonschema.exceptions.best_match(validator.iter_errors(arguments))
        if error is not None:
            raise InvalidArgumentsError(f"Invalid arguments for tool {name}: {error.message}")

        try:
            result = tool.execute(arguments)
            if inspect.isawaitable(result):
                result = await result
        except InvalidArgumentsError:
            raise
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e, exc_info=True)
            return types.CallToolResult(content=[types.TextContent(type="text", text=str(e))], isError=True)

        logger.debug("Tool %s handled with args %s", name, arguments)
        return self._to_result(result)

    def _to_result(self, result: Any) -> types.CallToolResult:
        if isinstance(result, types.CallToolResult):
            return result
        elif result is None:
            return types.CallToolResult(content=[])
        elif isinstance(result, str):
            return types.CallToolResult(content=[types.TextContent(type="text", text=result)])
        elif isinstance(result, dict):
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=_to_json(result))],
                structuredContent=result,
            )
        else:
            return types.CallToolResult(content=[types.TextContent(type="text", text=_to_json(result))])

    # --- Handlers ---

    def _list_handler(self, params: dict[str, Any]) -> types.ListToolsResult:
        return types.ListToolsResult(tools=self.list())

    async def _call_handler(self, params: dict[str, Any]) -> types.CallToolResult:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("tools/call requires a tool name")

        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, dict):
            raise InvalidParamsError("tools/call arguments must be an object")

        return await self.call(name, arguments)


def _to_json(value: Any) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True, exclude_none=True)
    return pydantic_core.to_json(value, fallback=str).decode(MESSAGE_ENCODING)

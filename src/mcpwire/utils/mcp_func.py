import inspect
from typing import Any, Literal

from mcp.server.fastmcp.utilities.func_metadata import FuncMetadata, func_metadata
from mcp.types import AnyFunction
from pydantic import ValidationError

from mcpwire.exceptions import InvalidArgumentsError, MCPFuncError

FuncRole = Literal["tool", "resource"]


class MCPFunc:
    """
    Binds a plain Python function to a tool or a resource.

    Both roles share the same checks on the function itself:
    - It must be a regular function or method. classmethod and staticmethod descriptors and abstract
      methods are rejected, since they cannot be called as they are.
    - It must not declare *args or **kwargs. Arguments arrive as one JSON object and are passed by name.
    - It must have a usable name, either its own or a custom one. Unnamed lambdas are rejected.

    The role decides the rest:
    - tool: an input schema is generated from the signature with the MCP SDK. execute() coerces the
      JSON arguments into the annotated Python types before the call. Structural checks against the
      schema are done by the ToolManager, so here a failure only means the values cannot be converted.
    - resource: the function must not take parameters, since resources/read carries only a uri. The
      return annotation is kept so the resource can advertise its MIME type before it is ever read.
    """

    func: AnyFunction
    role: FuncRole
    name: str
    doc: str | None
    is_async: bool

    meta: FuncMetadata | None
    input_schema: dict[str, Any]

    def __init__(self, func: AnyFunction, name: str | None = None, role: FuncRole = "tool"):
        """
        Args:
            func: The function to wrap.
            name: Custom name. Defaults to the function name.
            role: What the function backs, "tool" or "resource".

        Raises:
            MCPFuncError: If the function cannot back the role.
        """
        self.role = role
        self._validate_func(func)

        self.func = func
        self.name = self._get_name(name)
        self.doc = inspect.getdoc(func)
        self.is_async = self._is_async_callable(func)

        if role == "tool":
            self.meta = func_metadata(func)
            self.input_schema = self.meta.arg_model.model_json_schema(by_alias=True)
        else:
            self.meta = None
            self.input_schema = {"type": "object"}

    @property
    def return_annotation(self) -> Any:
        """The declared return type, or None when the function has no return annotation."""
        annotation = inspect.signature(self.func).return_annotation
        return None if annotation is inspect.Signature.empty else annotation

    def _validate_func(self, func: AnyFunction) -> None:
        if isinstance(func, (classmethod, staticmethod)):
            raise MCPFuncError(f"Function cannot be a {type(func).__name__}")

        if getattr(func, "__isabstractmethod__", False):
            raise MCPFuncError("Function cannot be an abstract method")

        if not inspect.isroutine(func):
            raise MCPFuncError("Object passed is not a function or method")

        parameters = inspect.signature(func).parameters.values()
        for param in parameters:
            if param.kind == inspect.Parameter.VAR_POSITIONAL:
                raise MCPFuncError("Functions with *args are not supported")
            if param.kind == inspect.Parameter.VAR_KEYWORD:
                raise MCPFuncError("Functions with **kwargs are not supported")

        if self.role == "resource" and parameters:
            raise MCPFuncError(f"Resource function {getattr(func, '__name__', func)} must not take parameters")

    def _get_name(self, name: str | None) -> str:
        name = name.strip() if name else ""
        if name:
            return name

        name = getattr(self.func, "__name__", "") or ""
        if not name:
            raise MCPFuncError("Name cannot be inferred from the function. Please provide a custom name.")
        elif name == "<lambda>":
            raise MCPFuncError("Lambda functions must be named. Please provide a custom name.")

        return name

    async def execute(self, args: dict[str, Any] | None = None) -> Any:
        """
        Call the function and return its result. Asynchronous functions are awaited.

        Args:
            args: The tool arguments. Resource functions are called without arguments.

        Raises:
            InvalidArgumentsError: If the arguments cannot be converted to the parameter types.
        """
        kwargs = self._convert_arguments(self.meta, args or {}) if self.meta is not None else {}

        if self.is_async:
            return await self.func(**kwargs)
        return self.func(**kwargs)

    def _convert_arguments(self, meta: FuncMetadata, args: dict[str, Any]) -> dict[str, Any]:
        try:
            # Clients may send nested values as JSON strings
            pre_parsed = meta.pre_parse_json(args)
            return meta.arg_model.model_validate(pre_parsed).model_dump_one_level()
        except ValidationError as e:
            raise InvalidArgumentsError(f"Invalid arguments for {self.name}: {e}") from e

    def _is_async_callable(self, obj: AnyFunction) -> bool:
        return inspect.iscoroutinefunction(obj) or (
            callable(obj) and inspect.iscoroutinefunction(getattr(obj, "__call__", None))
        )

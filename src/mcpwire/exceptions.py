from typing import Any

from mcp import types

from mcpwire.types import RESOURCE_NOT_FOUND, ErrorKind

# --- External Errors ---------------------------------------------


class MCPWireError(Exception):
    """
    Base for all mcpwire errors that would be exposed externally.
    """

    pass


class ConfigurationError(MCPWireError):
    """
    Configuration error - Raised before any message exchange when the server cannot be set up.
    Examples: an unknown transport tag, invalid CLI options.
    """

    pass


class LifecycleError(MCPWireError):
    """
    Raised when an operation is not valid in the current lifecycle phase of the server.
    Example: registering a handler after connect() was called.
    """

    pass


class MCPFuncError(MCPWireError):
    """Raised when a function cannot be used as an MCP tool or resource function."""

    pass


class PrimitiveError(MCPWireError):
    """
    Raised when an error is encountered while adding or retrieving
    a primitive (resource, tool)
    """

    pass


# --- Transport Errors ---------------------------------------------


class TransportError(MCPWireError):
    """
    Transport fault - I/O failure or an unparsable frame.
    Connection-fatal for the stdio transport, per-request for the streaming transport.
    """

    pass


class ProtocolParseError(TransportError):
    """Raised when a frame read from the transport is not valid JSON."""

    raw: str

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


class TransportClosedError(TransportError):
    """Raised when writing to a transport that was already closed."""

    pass


# --- Protocol Errors ---------------------------------------------
# Raised by the dispatcher or by handlers. They never leave the dispatcher,
# instead they are converted into an error response.


class MCPError(MCPWireError):
    """
    Base for errors that are answered with an error response.

    Attributes:
        kind: Machine readable error kind.
        code: JSON-RPC error code.
        data: Optional additional details added to the error response.
    """

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    code: int = types.INTERNAL_ERROR
    data: dict[str, Any] | None = None

    def __init__(self, message: str, data: dict[str, Any] | None = None):
        super().__init__(message)
        self.data = data


class InvalidEnvelopeError(MCPError):
    """The message is not a valid request or notification envelope."""

    kind = ErrorKind.INVALID_REQUEST
    code = types.INVALID_REQUEST


class MethodNotFoundError(MCPError):
    """No handler is registered for the requested method."""

    kind = ErrorKind.METHOD_NOT_FOUND
    code = types.METHOD_NOT_FOUND


class InvalidParamsError(MCPError):
    """Request params are missing or do not match what the handler expects."""

    kind = ErrorKind.INVALID_PARAMS
    code = types.INVALID_PARAMS


class ResourceNotFoundError(MCPError):
    """Resource not found error - Raised when no resource is registered for the uri."""

    kind = ErrorKind.RESOURCE_NOT_FOUND
    code = RESOURCE_NOT_FOUND


class ToolNotFoundError(MCPError):
    """
    Tool not found error - Raised when no tool is registered for the name.
    Answered with -32602 Invalid params as per MCP specification.
    """

    kind = ErrorKind.TOOL_NOT_FOUND
    code = types.INVALID_PARAMS


class UnsupportedProtocolVersionError(MCPError, ConfigurationError):
    """The client requested a protocol version the server does not support."""

    kind = ErrorKind.UNSUPPORTED_PROTOCOL_VERSION
    code = types.INVALID_PARAMS


class InvalidArgumentsError(InvalidParamsError):
    """Invalid tool arguments - Raised when arguments do not satisfy the input schema."""

    pass

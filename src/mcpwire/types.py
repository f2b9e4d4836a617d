from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Final, Literal, NamedTuple

MESSAGE_ENCODING: Final[Literal["utf-8"]] = "utf-8"

JSON_RPC_VERSION: Final = "2.0"

# Protocol revision this server speaks by default.
# https://modelcontextprotocol.io/specification/2024-11-05
PROTOCOL_VERSION: Final = "2024-11-05"

# --- Message types ---
Message = dict[str, Any]
RequestId = str | int
# Ids recovered from an envelope that failed validation, which may be any JSON number
RecoveredId = str | int | float


class EndOfStream(Enum):
    """
    Marker returned by Transport.read_message() when the peer closed the channel
    or the transport was closed locally.
    """

    END_OF_STREAM = "end-of-stream"


END_OF_STREAM: Final = EndOfStream.END_OF_STREAM


class ParseFailure(NamedTuple):
    """
    Returned by Transport.read_message() when a frame could not be decoded as JSON.

    Attributes:
        raw: The undecodable frame as received.
        error: The decoding error.
    """

    raw: str
    error: Exception


ReadResult = Any | EndOfStream | ParseFailure


class ServerState(str, Enum):
    """Lifecycle phases of an MCPServer."""

    CREATED = "created"
    CONNECTED = "connected"
    CLOSED = "closed"


# --- Handler types ---
Handler = Callable[[dict[str, Any]], Any | Awaitable[Any]]
ErrorHook = Callable[[BaseException, Any], None]


# --- Error kinds and codes ---
class ErrorKind(str, Enum):
    """Machine readable kind carried in every error response."""

    PARSE_ERROR = "parse_error"
    INVALID_REQUEST = "invalid_request"
    METHOD_NOT_FOUND = "method_not_found"
    INVALID_PARAMS = "invalid_params"
    INTERNAL_ERROR = "internal_error"
    RESOURCE_NOT_FOUND = "resource_not_found"
    TOOL_NOT_FOUND = "tool_not_found"
    UNSUPPORTED_PROTOCOL_VERSION = "unsupported_protocol_version"


"""
Resource not found error (-32002) is defined in the MCP specification but not available in the MCP SDK.
https://modelcontextprotocol.io/specification/2024-11-05/server/resources#error-handling
"""
RESOURCE_NOT_FOUND = -32002


class HandlerError(NamedTuple):
    """
    Explicit failure value a handler may return instead of a result.

    The dispatcher answers it with an error response carrying the same kind and message.
    When code is None, the code registered for the kind is used.

    Example:
        def read_config(params: dict[str, Any]) -> dict[str, Any] | HandlerError:
            if "uri" not in params:
                return HandlerError(ErrorKind.INVALID_PARAMS, "Missing uri")
            ...
    """

    kind: ErrorKind | str
    message: str
    code: int | None = None
    data: dict[str, Any] | None = None

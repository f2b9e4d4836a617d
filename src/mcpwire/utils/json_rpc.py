import traceback
from datetime import datetime
from typing import Any, Literal

import pydantic_core
from mcp import types
from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr, ValidationError

from mcpwire.exceptions import InvalidEnvelopeError, MCPError, ProtocolParseError
from mcpwire.types import (
    JSON_RPC_VERSION,
    MESSAGE_ENCODING,
    RESOURCE_NOT_FOUND,
    ErrorKind,
    HandlerError,
    Message,
    RecoveredId,
    RequestId,
)

ERROR_CODES: dict[str, int] = {
    ErrorKind.PARSE_ERROR.value: types.PARSE_ERROR,
    ErrorKind.INVALID_REQUEST.value: types.INVALID_REQUEST,
    ErrorKind.METHOD_NOT_FOUND.value: types.METHOD_NOT_FOUND,
    ErrorKind.INVALID_PARAMS.value: types.INVALID_PARAMS,
    ErrorKind.INTERNAL_ERROR.value: types.INTERNAL_ERROR,
    ErrorKind.RESOURCE_NOT_FOUND.value: RESOURCE_NOT_FOUND,
    ErrorKind.TOOL_NOT_FOUND.value: types.INVALID_PARAMS,
    ErrorKind.UNSUPPORTED_PROTOCOL_VERSION.value: types.INVALID_PARAMS,
}


# --- Envelope models ---


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] | None = None


class Request(_Envelope):
    """A client request - Must be answered with exactly one response carrying the same id."""

    id: StrictStr | StrictInt
    method: StrictStr
    params: dict[str, Any] | None = None


class Notification(_Envelope):
    """A one-way client message - Never answered."""

    method: StrictStr
    params: dict[str, Any] | None = None


class ClientResponse(_Envelope):
    """A response sent by the client. The server never issues requests, so these are unexpected."""

    id: StrictStr | StrictInt | None = None
    result: Any = None
    error: dict[str, Any] | None = None


Envelope = Request | Notification | ClientResponse


# Using a lenient model to recover the id from a message that failed validation.
class JSONRPCEnvelope(BaseModel):
    id: StrictStr | StrictInt | StrictFloat | None = None
    method: Any = None


# --- Framing ---


def decode(frame: str | bytes) -> Any:
    """
    Decode one frame into a JSON value.

    Args:
        frame: A single JSON document.

    Returns:
        The decoded JSON value.

    Raises:
        ProtocolParseError: If the frame is not valid JSON.
    """
    try:
        return pydantic_core.from_json(frame)
    except ValueError as e:
        raw = frame.decode(MESSAGE_ENCODING, errors="replace") if isinstance(frame, bytes) else frame
        raise ProtocolParseError(f"Invalid JSON: {e}", raw) from e


def encode(message: Message) -> str:
    """Encode a message as a single line of compact JSON."""
    return pydantic_core.to_json(message).decode(MESSAGE_ENCODING)


# --- Parse envelopes ---


def parse_envelope(message: Any) -> Envelope:
    """
    Classify a decoded message as a request, a notification or a client response.

    Args:
        message: The decoded JSON value.

    Returns:
        The validated envelope.

    Raises:
        InvalidEnvelopeError: If the message is not a valid envelope. The id is included in the
            error data when it is recoverable.
    """
    if not isinstance(message, dict):
        raise InvalidEnvelopeError(f"Message must be a JSON object, got {type(message).__name__}")

    try:
        if "method" in message:
            if "id" in message:
                return Request.model_validate(message)
            return Notification.model_validate(message)
        elif "result" in message or "error" in message:
            return ClientResponse.model_validate(message)
    except ValidationError as e:
        raise InvalidEnvelopeError(f"Invalid message: {_describe(e)}", {"id": get_request_id(message)}) from e

    raise InvalidEnvelopeError("Message must contain a method", {"id": get_request_id(message)})


def _describe(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(loc) for loc in e['loc']) or 'message'}: {e['msg']}" for e in error.errors())


def get_request_id(message: Any) -> RecoveredId | None:
    """
    Recover the request id from a message that may not be a valid envelope.
    """
    if not isinstance(message, dict):
        return None

    try:
        return JSONRPCEnvelope.model_validate(message).id
    except ValidationError:
        return None


# --- Build messages ---


def build_response_message(request_id: RequestId, result: Any) -> Message:
    """
    Build a success response with the given request id and result.

    Args:
        request_id: The id of the request being answered.
        result: The handler result. Pydantic models are dumped by alias, excluding None fields.

    Returns:
        The response message.
    """
    if isinstance(result, BaseModel):
        result = result.model_dump(by_alias=True, exclude_none=True, mode="json")
    elif result is None:
        result = {}

    return {"jsonrpc": JSON_RPC_VERSION, "id": request_id, "result": result}


def build_notification_message(method: str, params: dict[str, Any] | None = None) -> Message:
    """
    Build a server to client notification.
    """
    message: Message = {"jsonrpc": JSON_RPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


def build_error_message(
    error: BaseException | HandlerError,
    request_id: RecoveredId | None,
    include_stack_trace: bool = False,
) -> tuple[Message, str]:
    """
    Build an error response for the given error.

    MCPError exceptions and HandlerError values carry their own kind and code. Any other
    exception is reported as an internal error.

    Args:
        error: The error to report.
        request_id: The id of the request being answered. None when it could not be recovered.
        include_stack_trace: Whether to include the stack trace in the error data.

    Returns:
        A tuple containing the error response and a human-readable string.
    """

    if isinstance(error, HandlerError):
        kind = error.kind.value if isinstance(error.kind, ErrorKind) else str(error.kind)
        code = error.code if error.code is not None else ERROR_CODES.get(kind, types.INTERNAL_ERROR)
        message = error.message
        data = error.data
        error_message = f"{kind}: {message} (Request ID {request_id})"
    else:
        error_type = error.__class__.__name__
        if isinstance(error, MCPError):
            kind = error.kind.value
            code = error.code
            message = str(error)
        else:
            kind = ErrorKind.INTERNAL_ERROR.value
            code = types.INTERNAL_ERROR
            message = f"{error_type}: {error}"
        error_message = f"{error_type}: {error} (Request ID {request_id})"

        # Build error data
        data = {
            "errorType": error_type,
            "isoTimestamp": datetime.now().isoformat(),
        }

        if include_stack_trace:
            stack_trace = traceback.format_exception(type(error), error, error.__traceback__)
            data["stackTrace"] = "".join(stack_trace)

        if isinstance(error, MCPError) and error.data:
            data.update({k: v for k, v in error.data.items() if k != "id"})

    error_body: dict[str, Any] = {"kind": kind, "code": code, "message": message}
    if data:
        error_body["data"] = data

    return {"jsonrpc": JSON_RPC_VERSION, "id": request_id, "error": error_body}, error_message

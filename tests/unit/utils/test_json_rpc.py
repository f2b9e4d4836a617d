"""Tests for envelope parsing, framing and message building."""

import json

import mcp.types as types
import pytest

from mcpwire.exceptions import (
    InvalidEnvelopeError,
    ProtocolParseError,
    ResourceNotFoundError,
    ToolNotFoundError,
    UnsupportedProtocolVersionError,
)
from mcpwire.registry import ServerCapabilities
from mcpwire.types import RESOURCE_NOT_FOUND, ErrorKind, HandlerError
from mcpwire.utils import json_rpc


class TestDecode:
    """Test suite for decode and encode."""

    def test_decode_object(self):
        assert json_rpc.decode('{"id": 1, "method": "ping"}') == {"id": 1, "method": "ping"}

    def test_decode_bytes(self):
        assert json_rpc.decode(b'{"method": "x"}') == {"method": "x"}

    def test_decode_invalid_json_raises_parse_error(self):
        with pytest.raises(ProtocolParseError) as exc_info:
            json_rpc.decode("not json")

        assert exc_info.value.raw == "not json"

    def test_decode_empty_raises_parse_error(self):
        with pytest.raises(ProtocolParseError):
            json_rpc.decode("")

    def test_encode_is_single_line(self):
        frame = json_rpc.encode({"id": 1, "result": {"text": "line1\nline2"}})

        assert "\n" not in frame
        assert json.loads(frame)["result"]["text"] == "line1\nline2"

    def test_encode_decode_preserves_fields(self):
        messages = [
            {"jsonrpc": "2.0", "id": "abc", "method": "tools/call", "params": {"name": "add", "arguments": {"a": 1}}},
            {"jsonrpc": "2.0", "id": 7, "result": {"tools": []}},
            {"jsonrpc": "2.0", "id": 8, "error": {"kind": "tool_not_found", "code": -32602, "message": "nope"}},
            {"jsonrpc": "2.0", "method": "notify/progress", "params": {"pct": 50}},
        ]

        for message in messages:
            assert json_rpc.decode(json_rpc.encode(message)) == message


class TestParseEnvelope:
    """Test suite for parse_envelope."""

    def test_request(self):
        envelope = json_rpc.parse_envelope({"id": 1, "method": "initialize", "params": {}})

        assert isinstance(envelope, json_rpc.Request)
        assert envelope.id == 1
        assert envelope.method == "initialize"
        assert envelope.params == {}

    def test_request_with_string_id_and_jsonrpc(self):
        envelope = json_rpc.parse_envelope({"jsonrpc": "2.0", "id": "req-1", "method": "ping"})

        assert isinstance(envelope, json_rpc.Request)
        assert envelope.id == "req-1"
        assert envelope.params is None

    def test_notification(self):
        envelope = json_rpc.parse_envelope({"method": "notify/progress", "params": {"pct": 50}})

        assert isinstance(envelope, json_rpc.Notification)
        assert envelope.params == {"pct": 50}

    def test_client_response(self):
        envelope = json_rpc.parse_envelope({"id": 3, "result": {}})

        assert isinstance(envelope, json_rpc.ClientResponse)

    def test_non_object_is_invalid(self):
        with pytest.raises(InvalidEnvelopeError, match="JSON object"):
            json_rpc.parse_envelope([1, 2, 3])

    def test_missing_method_is_invalid(self):
        with pytest.raises(InvalidEnvelopeError, match="method"):
            json_rpc.parse_envelope({"id": 4})

    def test_null_id_is_invalid(self):
        with pytest.raises(InvalidEnvelopeError):
            json_rpc.parse_envelope({"id": None, "method": "ping"})

    def test_boolean_id_is_invalid(self):
        with pytest.raises(InvalidEnvelopeError):
            json_rpc.parse_envelope({"id": True, "method": "ping"})

    def test_fractional_id_is_invalid(self):
        with pytest.raises(InvalidEnvelopeError) as exc_info:
            json_rpc.parse_envelope({"id": 1.5, "method": "ping"})

        assert exc_info.value.data == {"id": 1.5}

    def test_params_must_be_object(self):
        with pytest.raises(InvalidEnvelopeError) as exc_info:
            json_rpc.parse_envelope({"id": 5, "method": "ping", "params": [1]})

        assert exc_info.value.data == {"id": 5}

    def test_wrong_jsonrpc_version_is_invalid(self):
        with pytest.raises(InvalidEnvelopeError):
            json_rpc.parse_envelope({"jsonrpc": "1.0", "id": 1, "method": "ping"})


class TestGetRequestId:
    """Test suite for get_request_id."""

    def test_recovers_id(self):
        assert json_rpc.get_request_id({"id": 9, "method": 5}) == 9

    def test_no_id(self):
        assert json_rpc.get_request_id({"method": "x"}) is None

    def test_recovers_fractional_id(self):
        assert json_rpc.get_request_id({"id": 1.5, "method": "ping"}) == 1.5

    def test_invalid_id(self):
        assert json_rpc.get_request_id({"id": [1]}) is None

    def test_non_object(self):
        assert json_rpc.get_request_id("text") is None


class TestBuildMessages:
    """Test suite for response, notification and error building."""

    def test_build_response_message(self):
        message = json_rpc.build_response_message(1, {"value": 2})

        assert message == {"jsonrpc": "2.0", "id": 1, "result": {"value": 2}}

    def test_build_response_message_dumps_models(self):
        message = json_rpc.build_response_message("a", ServerCapabilities())

        assert message["result"] == {
            "resources": {"list": False, "read": False},
            "tools": {"list": False, "call": False},
        }

    def test_build_response_message_none_result(self):
        assert json_rpc.build_response_message(1, None)["result"] == {}

    def test_build_notification_message(self):
        assert json_rpc.build_notification_message("notifications/message", {"level": "info"}) == {
            "jsonrpc": "2.0",
            "method": "notifications/message",
            "params": {"level": "info"},
        }
        assert "params" not in json_rpc.build_notification_message("ping")

    def test_build_error_message_for_mcp_error(self):
        message, error_message = json_rpc.build_error_message(ToolNotFoundError("Unknown tool: nope"), 2)

        assert message["id"] == 2
        assert message["error"]["kind"] == "tool_not_found"
        assert message["error"]["code"] == types.INVALID_PARAMS
        assert message["error"]["message"] == "Unknown tool: nope"
        assert message["error"]["data"]["errorType"] == "ToolNotFoundError"
        assert "isoTimestamp" in message["error"]["data"]
        assert "Request ID 2" in error_message

    def test_build_error_message_for_resource_not_found(self):
        message, _ = json_rpc.build_error_message(ResourceNotFoundError("missing", {"uri": "a://b"}), 1)

        assert message["error"]["code"] == RESOURCE_NOT_FOUND
        assert message["error"]["data"]["uri"] == "a://b"

    def test_build_error_message_for_generic_exception(self):
        message, _ = json_rpc.build_error_message(ValueError("boom"), "x")

        assert message["error"]["kind"] == "internal_error"
        assert message["error"]["code"] == types.INTERNAL_ERROR
        assert "ValueError" in message["error"]["message"]
        assert "boom" in message["error"]["message"]

    def test_build_error_message_with_stack_trace(self):
        try:
            raise RuntimeError("traced")
        except RuntimeError as e:
            message, _ = json_rpc.build_error_message(e, 1, include_stack_trace=True)

        assert "RuntimeError: traced" in message["error"]["data"]["stackTrace"]

    def test_build_error_message_without_stack_trace(self):
        message, _ = json_rpc.build_error_message(RuntimeError("x"), 1)

        assert "stackTrace" not in message["error"]["data"]

    def test_build_error_message_for_handler_error(self):
        message, _ = json_rpc.build_error_message(HandlerError(ErrorKind.INVALID_PARAMS, "Missing uri"), 3)

        assert message["error"] == {"kind": "invalid_params", "code": types.INVALID_PARAMS, "message": "Missing uri"}

    def test_build_error_message_for_handler_error_with_custom_kind(self):
        message, _ = json_rpc.build_error_message(HandlerError("quota_exceeded", "Too many calls", code=-32050), 3)

        assert message["error"]["kind"] == "quota_exceeded"
        assert message["error"]["code"] == -32050

    def test_build_error_message_custom_kind_defaults_to_internal_error_code(self):
        message, _ = json_rpc.build_error_message(HandlerError("quota_exceeded", "Too many calls"), 3)

        assert message["error"]["code"] == types.INTERNAL_ERROR

    def test_build_error_message_unsupported_version_data(self):
        error = UnsupportedProtocolVersionError("Unsupported", {"supported": ["2024-11-05"], "requested": "1999"})
        message, _ = json_rpc.build_error_message(error, 1)

        assert message["error"]["kind"] == "unsupported_protocol_version"
        assert message["error"]["data"]["supported"] == ["2024-11-05"]

    def test_build_error_message_without_id(self):
        message, _ = json_rpc.build_error_message(HandlerError(ErrorKind.PARSE_ERROR, "bad"), None)

        assert message["id"] is None
        assert message["error"]["code"] == types.PARSE_ERROR

    def test_error_id_data_not_duplicated(self):
        message, _ = json_rpc.build_error_message(InvalidEnvelopeError("bad", {"id": 5}), 5)

        assert "id" not in message["error"]["data"]

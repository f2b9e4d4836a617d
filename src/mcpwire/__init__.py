"""mcpwire - The protocol core of a Model Context Protocol server: transports, dispatch and providers"""

from mcpwire.exceptions import (
    ConfigurationError,
    InvalidParamsError,
    LifecycleError,
    MCPError,
    MCPWireError,
    ResourceNotFoundError,
    ToolNotFoundError,
    TransportError,
)
from mcpwire.managers.resource_manager import FunctionResource, ResourceProvider, TextResource
from mcpwire.managers.tool_manager import FunctionTool, Tool
from mcpwire.registry import HandlerRegistry, ServerCapabilities
from mcpwire.server import MCPServer
from mcpwire.transports.base import Transport
from mcpwire.transports.factory import create_transport
from mcpwire.transports.stdio import StdioTransport
from mcpwire.transports.streaming import StreamingHTTPApp, StreamingTransport
from mcpwire.types import END_OF_STREAM, PROTOCOL_VERSION, ErrorKind, HandlerError, Message, ParseFailure

__all__ = [
    "MCPServer",
    # --- Types -----------------------------
    "END_OF_STREAM",
    "PROTOCOL_VERSION",
    "ErrorKind",
    "HandlerError",
    "Message",
    "ParseFailure",
    "ServerCapabilities",
    # --- Exceptions ------------------------
    "MCPWireError",
    "MCPError",
    "ConfigurationError",
    "LifecycleError",
    "InvalidParamsError",
    "ResourceNotFoundError",
    "ToolNotFoundError",
    "TransportError",
    # --- Registry and providers ------------
    "HandlerRegistry",
    "ResourceProvider",
    "TextResource",
    "FunctionResource",
    "Tool",
    "FunctionTool",
    # --- Transports ------------------------
    "Transport",
    "StdioTransport",
    "StreamingTransport",
    "StreamingHTTPApp",
    "create_transport",
]

import inspect
import logging
from collections.abc import Iterable
from typing import Any

import anyio
from pydantic import BaseModel, ConfigDict

from mcpwire.exceptions import (
    ConfigurationError,
    InvalidEnvelopeError,
    InvalidParamsError,
    LifecycleError,
    MCPError,
    MethodNotFoundError,
    ProtocolParseError,
    TransportClosedError,
    TransportError,
    UnsupportedProtocolVersionError,
)
from mcpwire.managers.resource_manager import ResourceManager
from mcpwire.managers.tool_manager import ToolManager
from mcpwire.registry import HandlerRegistry, ServerCapabilities
from mcpwire.transports.base import Transport
from mcpwire.types import (
    END_OF_STREAM,
    PROTOCOL_VERSION,
    ErrorHook,
    Handler,
    HandlerError,
    Message,
    ParseFailure,
    RecoveredId,
    ServerState,
)
from mcpwire.utils import json_rpc

logger = logging.getLogger(__name__)


class Implementation(BaseModel):
    name: str
    version: str | None = None


class InitializeResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    protocolVersion: str
    implementation: Implementation
    capabilities: ServerCapabilities
    instructions: str | None = None


class MCPServer:
    """
    MCPServer owns the capabilities and the handler registry of an MCP server, binds to one
    transport, and runs the receive-dispatch-respond loop.

    Lifecycle:
        created -> connected -> closed

        Capabilities, handlers, resources and tools are configured while the server is created.
        connect() freezes them, and runs the loop until the peer closes the channel, close() is
        called, or a fatal transport fault occurs. A closed server cannot be reconnected.

    Dispatch:
        - Messages are processed strictly one at a time. A message is parsed, dispatched and
          answered before the next one is read, so responses are never reordered.
        - Every request with an id receives exactly one response with the same id: the handler
          result, or an error response. A failing handler never aborts the connection.
        - Notifications never receive a response. Failures while handling them are only reported
          through the error hook.
        - Malformed envelopes are reported through the error hook, and answered with an
          invalid_request error only when their id can be recovered.

    Error hook:
        The error hook is invoked for every out-of-band fault: parse failures, malformed envelopes,
        uncaught handler exceptions and transport faults. It is an observability extension point,
        and never affects the responses. By default faults are logged.

    Example:
        ```python
        server = MCPServer("my-server", version="1.0.0")

        @server.tool()
        def add(a: float, b: float) -> float:
            '''Add two numbers'''
            return a + b

        server.resource.add(TextResource("docs://readme", "readme", "Hello"))

        anyio.run(server.connect, StdioTransport())
        ```
    """

    _registry: HandlerRegistry
    _capabilities: ServerCapabilities | None
    _supported_protocol_versions: tuple[str, ...]
    _error_hook: ErrorHook | None
    _include_stack_trace: bool

    _state: ServerState
    _transport: Transport | None
    _loop_scope: anyio.CancelScope | None
    _initialized: bool

    tool: ToolManager
    resource: ResourceManager

    def __init__(
        self,
        name: str,
        version: str | None = None,
        instructions: str | None = None,
        supported_protocol_versions: Iterable[str] = (PROTOCOL_VERSION,),
        error_hook: ErrorHook | None = None,
        include_stack_trace: bool = False,
    ) -> None:
        """
        Args:
            name: The name of the server, advertised at initialize.
            version: The version of the server, advertised at initialize.
            instructions: Optional instructions for the client, advertised at initialize.
            supported_protocol_versions: Protocol versions accepted at initialize, preferred first.
                A client requesting another version is answered with unsupported_protocol_version.
            error_hook: Called with (error, message) for every out-of-band fault.
            include_stack_trace: Whether to include the stack trace in error responses.
        """
        self._name = name
        self._version = version
        self._instructions = instructions

        self._supported_protocol_versions = tuple(supported_protocol_versions)
        if not self._supported_protocol_versions:
            raise ConfigurationError("At least one protocol version must be supported")

        self._error_hook = error_hook
        self._include_stack_trace = include_stack_trace

        self._state = ServerState.CREATED
        self._transport = None
        self._loop_scope = None
        self._initialized = False

        # Setup registry with the built-in handlers
        self._registry = HandlerRegistry()
        self._capabilities = None
        self._registry.register("initialize", self._initialize_handler)
        self._registry.register("ping", self._ping_handler)
        self._registry.register("notifications/initialized", self._initialized_handler)

        # Setup managers
        self.resource = ResourceManager(self._registry)
        self.tool = ToolManager(self._registry)

    # --- Properties ---
    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str | None:
        return self._version

    @property
    def instructions(self) -> str | None:
        return self._instructions

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def initialized(self) -> bool:
        """Whether the client sent notifications/initialized."""
        return self._initialized

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def capabilities(self) -> ServerCapabilities:
        """
        The advertised capabilities. Unless set explicitly with set_capabilities(), they are
        derived from the registered handlers.
        """
        if self._capabilities is None:
            return self._registry.capabilities()
        return self._capabilities

    # --- Configuration ---
    def set_capabilities(self, capabilities: ServerCapabilities | dict[str, Any]) -> None:
        """
        Set the advertised capabilities explicitly, e.g. to hide a feature.

        Raises:
            LifecycleError: If the server is not in the created state.
            pydantic.ValidationError: If the capabilities are not a mapping of booleans.
        """
        self._check_created("set capabilities")
        self._capabilities = ServerCapabilities.model_validate(capabilities)

    def set_request_handler(self, method: str, handler: Handler) -> None:
        """
        Register a handler for requests and notifications with the given method. A handler for
        the same method, including a built-in one, is replaced.

        The handler receives the params (an empty dict when absent) and returns the result, or a
        HandlerError value. It may raise an MCPError to answer with a specific error kind.

        Raises:
            LifecycleError: If the server is not in the created state.
        """
        self._check_created("register handlers")
        self._registry.register(method, handler)

    def set_error_hook(self, hook: ErrorHook | None) -> None:
        self._check_created("set the error hook")
        self._error_hook = hook

    def _check_created(self, action: str) -> None:
        if self._state is not ServerState.CREATED:
            raise LifecycleError(f"Cannot {action}, server is {self._state.value}")

    # --- Connection ---
    async def connect(self, transport: Transport) -> None:
        """
        Bind to the transport and run the receive-dispatch-respond loop.

        Returns when the peer closes the channel or close() is called.

        Raises:
            LifecycleError: If the server was already connected.
            ConfigurationError: If a capability is advertised without a registered handler.
            TransportError: On a connection-fatal transport fault, after it was reported through
                the error hook.
        """
        self._check_created("connect")

        unbacked = self._registry.unbacked_capabilities(self.capabilities)
        if unbacked:
            # The transport was handed over, release it even though the server never binds to it
            await transport.close()
            raise ConfigurationError(f"Capabilities advertised without a handler: {', '.join(unbacked)}")

        self._registry.freeze()
        self._transport = transport
        self._state = ServerState.CONNECTED
        logger.info("Server %s connected over %s", self._name, transport.__class__.__name__)

        try:
            with anyio.CancelScope() as scope:
                self._loop_scope = scope
                await self._run_loop(transport)
        finally:
            self._loop_scope = None
            with anyio.CancelScope(shield=True):
                await self.close()

    async def close(self) -> None:
        """
        Close the server and its transport, and stop the loop. Idempotent.
        """
        if self._state is ServerState.CLOSED:
            return

        self._state = ServerState.CLOSED
        logger.info("Closing server %s", self._name)

        if self._loop_scope is not None:
            self._loop_scope.cancel()

        if self._transport is not None:
            await self._transport.close()

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """
        Send a notification to the client.

        Raises:
            LifecycleError: If the server is not connected.
        """
        if self._state is not ServerState.CONNECTED or self._transport is None:
            raise LifecycleError("Notifications can only be sent while connected")

        await self._transport.write_message(json_rpc.build_notification_message(method, params))

    async def _run_loop(self, transport: Transport) -> None:
        while True:
            try:
                message = await transport.read_message()
            except TransportError as e:
                self._report_error(e, None)
                raise

            if message is END_OF_STREAM:
                logger.info("Peer closed the connection")
                return

            if isinstance(message, ParseFailure):
                error = message.error
                if not isinstance(error, ProtocolParseError):
                    error = ProtocolParseError(f"Invalid frame: {error}", message.raw)
                self._report_error(error, message.raw)

                if transport.parse_failure_is_fatal:
                    raise error
                continue

            response = await self.handle(message)
            if response is None:
                continue

            try:
                await transport.write_message(response)
            except TransportClosedError:
                # Closed locally while the message was being handled
                logger.debug("Transport closed, dropping response %s", response.get("id"))
                return
            except TransportError as e:
                self._report_error(e, response)
                raise

    # --- Dispatch ---
    async def handle(self, message: Any) -> Message | None:
        """
        Dispatch one decoded message and return the response, or None when nothing must be sent.

        It is the single entry point used by the loop, and can be used directly to serve messages
        received by other means.

        Args:
            message: The decoded JSON message.

        Returns:
            The response message, or None for notifications and unanswerable messages.
        """
        try:
            envelope = json_rpc.parse_envelope(message)
        except InvalidEnvelopeError as e:
            self._report_error(e, message)
            request_id = json_rpc.get_request_id(message)
            if request_id is None:
                logger.debug("Dropping malformed message without id")
                return None
            return self._process_error(e, request_id)

        if isinstance(envelope, json_rpc.Request):
            return await self._handle_request(envelope)
        elif isinstance(envelope, json_rpc.Notification):
            await self._handle_notification(envelope)
            return None
        else:
            self._report_error(InvalidEnvelopeError("Unexpected response message from client"), message)
            return None

    async def _handle_request(self, request: json_rpc.Request) -> Message:
        handler = self._registry.get(request.method)
        if handler is None:
            return self._process_error(MethodNotFoundError(f"Method not found: {request.method}"), request.id)

        logger.debug("Handling request %s - %s", request.id, request.method)

        try:
            result = await self._call_handler(handler, request.params or {})
        except MCPError as e:
            return self._process_error(e, request.id)
        except Exception as e:
            self._report_error(e, request)
            return self._process_error(e, request.id)

        if isinstance(result, HandlerError):
            return self._process_error(result, request.id)

        logger.debug("Successfully handled request %s", request.id)
        return json_rpc.build_response_message(request.id, result)

    async def _handle_notification(self, notification: json_rpc.Notification) -> None:
        handler = self._registry.get(notification.method)
        if handler is None:
            logger.debug("No handler found for notification %s", notification.method)
            return

        logger.debug("Handling notification %s", notification.method)

        try:
            result = await self._call_handler(handler, notification.params or {})
        except Exception as e:
            self._report_error(e, notification)
            return

        if isinstance(result, HandlerError):
            self._report_error(MCPError(f"{result.kind}: {result.message}", result.data), notification)

    async def _call_handler(self, handler: Handler, params: dict[str, Any]) -> Any:
        result = handler(params)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _process_error(self, error: BaseException | HandlerError, request_id: RecoveredId) -> Message:
        response, error_message = json_rpc.build_error_message(
            error, request_id, include_stack_trace=self._include_stack_trace
        )

        if isinstance(error, BaseException) and not isinstance(error, MCPError):
            logger.error(error_message, exc_info=(type(error), error, error.__traceback__))
        else:
            logger.warning(error_message)

        return response

    def _report_error(self, error: BaseException, message: Any) -> None:
        hook = self._error_hook
        if hook is None:
            logger.error("Error while serving %s: %s", self._name, error, exc_info=error)
            return

        try:
            hook(error, message)
        except Exception:
            logger.exception("Error hook failed")

    # --- Built-in handlers ---
    def _initialize_handler(self, params: dict[str, Any]) -> InitializeResult:
        """
        Handler for the initialize request, the first step of the MCP handshake.

        The requested protocol version must exactly match one of the supported versions. When the
        client does not request a version, the preferred version is used.
        https://modelcontextprotocol.io/specification/2024-11-05/basic/lifecycle#version-negotiation
        """
        requested = params.get("protocolVersion")

        if requested is None:
            protocol_version = self._supported_protocol_versions[0]
        elif not isinstance(requested, str):
            raise InvalidParamsError("protocolVersion must be a string")
        elif requested in self._supported_protocol_versions:
            protocol_version = requested
        else:
            raise UnsupportedProtocolVersionError(
                f"Unsupported protocol version: {requested}",
                {"supported": list(self._supported_protocol_versions), "requested": requested},
            )

        return InitializeResult(
            protocolVersion=protocol_version,
            implementation=Implementation(name=self._name, version=self._version),
            capabilities=self.capabilities,
            instructions=self._instructions,
        )

    def _ping_handler(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    def _initialized_handler(self, params: dict[str, Any]) -> None:
        logger.debug("Client completed initialization")
        self._initialized = True

import logging
import uuid
from collections.abc import AsyncGenerator, Callable, Mapping
from contextlib import asynccontextmanager
from http import HTTPStatus
from types import TracebackType
from typing import Any, NamedTuple

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from sse_starlette.sse import EventSourceResponse
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from mcpwire.exceptions import LifecycleError, ProtocolParseError, TransportClosedError, TransportError
from mcpwire.server import MCPServer
from mcpwire.transports.base import Transport
from mcpwire.types import END_OF_STREAM, ErrorKind, HandlerError, Message, ParseFailure, ReadResult
from mcpwire.utils import json_rpc

logger = logging.getLogger(__name__)


MEDIA_TYPE_JSON = "application/json"

# Query parameter correlating a POSTed message with its SSE channel, as per the HTTP with SSE transport.
# https://modelcontextprotocol.io/specification/2024-11-05/basic/transports#http-with-sse
SESSION_ID_PARAM = "session_id"


class StreamingTransport(Transport):
    """
    Streaming transport - Outbound messages are pushed as events on a long-lived channel, and inbound
    messages arrive individually on a separate channel.

    Inbound messages are fed with submit() into a memory object stream that read_message() drains,
    so each message is consumed exactly once. Outbound messages are queued on a second memory object
    stream consumed by events(). Writes are serialized by the base transport lock.

    A body that cannot be decoded is a per-request failure. submit() returns the ParseFailure so the
    caller can answer it, and queues it so the server reports it through its error hook. The
    connection stays open.
    """

    parse_failure_is_fatal = False

    session_id: str

    _inbound_send: MemoryObjectSendStream[ReadResult]
    _inbound_receive: MemoryObjectReceiveStream[ReadResult]
    _outbound_send: MemoryObjectSendStream[Message]
    _outbound_receive: MemoryObjectReceiveStream[Message]

    def __init__(self, session_id: str | None = None, max_buffered: int = 100) -> None:
        """
        Args:
            session_id: Identifier correlating inbound requests with this transport. Generated when
                not provided.
            max_buffered: Number of messages buffered in each direction before senders wait.
        """
        super().__init__()
        self.session_id = session_id or uuid.uuid4().hex

        self._inbound_send, self._inbound_receive = anyio.create_memory_object_stream[ReadResult](max_buffered)
        self._outbound_send, self._outbound_receive = anyio.create_memory_object_stream[Message](max_buffered)

    async def submit(self, body: str | bytes) -> ParseFailure | None:
        """
        Feed one inbound message body.

        Args:
            body: The raw JSON body.

        Returns:
            A ParseFailure if the body could not be decoded, None otherwise.

        Raises:
            TransportClosedError: If the transport is closed.
        """
        if self._closed:
            raise TransportClosedError(f"Session {self.session_id} is closed")

        failure = None
        try:
            item = json_rpc.decode(body)
        except ProtocolParseError as e:
            item = failure = ParseFailure(e.raw, e)

        try:
            await self._inbound_send.send(item)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as e:
            raise TransportClosedError(f"Session {self.session_id} is closed") from e

        return failure

    async def events(self) -> AsyncGenerator[Message, None]:
        """
        Yield outbound messages until the transport is closed.
        """
        async with self._outbound_receive:
            async for message in self._outbound_receive:
                yield message

    async def _receive(self) -> ReadResult:
        try:
            return await self._inbound_receive.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            return END_OF_STREAM

    async def _send(self, message: Message) -> None:
        try:
            await self._outbound_send.send(message)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as e:
            raise TransportError(f"Push channel of session {self.session_id} is closed") from e

    async def _release(self) -> None:
        await self._inbound_send.aclose()
        await self._outbound_send.aclose()


class MCPHTTPResponse(NamedTuple):
    """
    Represents the response to a client HTTP request.

    Attributes:
        status_code: The HTTP status code to return to the client.
        content: The response content as a string or None.
        headers: Additional HTTP headers to include in the response.
        media_type: The MIME type of the response content.
    """

    status_code: HTTPStatus
    content: str | None = None
    headers: Mapping[str, str] | None = None
    media_type: str = MEDIA_TYPE_JSON


ServerFactory = Callable[[], MCPServer]


class StreamingHTTPApp:
    """
    Serves MCP over the HTTP with SSE transport, one server per client connection.
    https://modelcontextprotocol.io/specification/2024-11-05/basic/transports#http-with-sse

    - GET {path}/sse opens the push channel. A new session id, StreamingTransport and server are
      created, and the server is connected in the background. The first event is "endpoint", carrying
      the URL the client must POST its messages to. Every outbound message follows as a "message" event.
    - POST {path}/messages?session_id=<id> delivers one message. It is answered 202 Accepted, and the
      response is pushed on the channel.
    - When the client disconnects, only its session is closed.

    Security Warning: Security is not provided inbuilt. It is the responsibility of the web framework to
    provide security.

    Example:
        def build_server() -> MCPServer:
            server = MCPServer("my-server")
            server.tool.add(add)
            return server

        app = StreamingHTTPApp(build_server, path="/mcp").as_starlette()
    """

    _server_factory: ServerFactory
    _path: str
    _ping_interval: int
    _max_buffered: int

    _sessions: dict[str, StreamingTransport]
    _tg: TaskGroup | None

    def __init__(
        self, server_factory: ServerFactory, path: str = "", ping_interval: int = 15, max_buffered: int = 100
    ) -> None:
        """
        Args:
            server_factory: Called once per connection to build the MCPServer serving it.
            path: Path prefix of the sse and messages endpoints.
            ping_interval: The ping interval in seconds to keep the push channel alive.
            max_buffered: Number of messages buffered in each direction of a session.
        """
        self._server_factory = server_factory
        self._path = path.rstrip("/")
        self._ping_interval = ping_interval
        self._max_buffered = max_buffered

        self._sessions = {}
        self._tg = None

    @property
    def sessions(self) -> Mapping[str, StreamingTransport]:
        return self._sessions

    async def __aenter__(self) -> "StreamingHTTPApp":
        self._tg = await anyio.create_task_group().__aenter__()
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None
    ) -> bool | None:
        if self._tg is None:
            return None

        logger.debug("Shutting down StreamingHTTPApp")
        for transport in list(self._sessions.values()):
            await transport.close()

        self._tg.cancel_scope.cancel()
        result = await self._tg.__aexit__(exc_type, exc, tb)
        self._tg = None
        return result

    @asynccontextmanager
    async def lifespan(self, _: Any) -> AsyncGenerator[None, None]:
        async with self:
            yield

    def as_starlette(self, debug: bool = False) -> Starlette:
        """
        Provide the transport as a Starlette application.
        """
        routes = [
            Route(f"{self._path}/sse", endpoint=self.sse_endpoint, methods=["GET"]),
            Route(f"{self._path}/messages", endpoint=self.messages_endpoint, methods=["POST"]),
        ]

        logger.info("Creating MCP application at path: %s", self._path or "/")
        return Starlette(routes=routes, debug=debug, lifespan=self.lifespan)

    # --- Push channel ---
    async def open_session(self) -> tuple[StreamingTransport, MCPServer]:
        """
        Create a session and connect a new server to it in the background.

        Returns:
            The session transport and the server.

        Raises:
            LifecycleError: If used outside an 'async with' block or lifespan.
        """
        if self._tg is None:
            raise LifecycleError("Sessions can only be opened inside an 'async with' block or a lifespan")

        transport = StreamingTransport(max_buffered=self._max_buffered)
        server = self._server_factory()
        self._sessions[transport.session_id] = transport
        self._tg.start_soon(self._run_session, server, transport)

        logger.info("Opened session %s", transport.session_id)
        return transport, server

    async def _run_session(self, server: MCPServer, transport: StreamingTransport) -> None:
        try:
            await server.connect(transport)
        except TransportError as e:
            # Already reported through the server's error hook
            logger.debug("Session %s ended with a transport fault: %s", transport.session_id, e)
        finally:
            self._sessions.pop(transport.session_id, None)
            with anyio.CancelScope(shield=True):
                await transport.close()
            logger.info("Closed session %s", transport.session_id)

    async def sse_endpoint(self, request: Request) -> Response:
        transport, _ = await self.open_session()
        endpoint = f"{request.scope.get('root_path', '')}{self._path}/messages?{SESSION_ID_PARAM}={transport.session_id}"

        async def event_stream() -> AsyncGenerator[dict[str, str], None]:
            try:
                yield {"event": "endpoint", "data": endpoint}
                async for message in transport.events():
                    yield {"event": "message", "data": json_rpc.encode(message)}
            finally:
                # Ends the session loop whether or not the server has started reading yet
                with anyio.CancelScope(shield=True):
                    await transport.close()

        return EventSourceResponse(event_stream(), ping=self._ping_interval)

    # --- Request channel ---
    async def dispatch(self, session_id: str | None, headers: Mapping[str, str], body: str | bytes) -> MCPHTTPResponse:
        """
        Deliver one POSTed message to its session.

        Args:
            session_id: The session id from the query string.
            headers: HTTP request headers.
            body: HTTP request body.

        Returns:
            MCPHTTPResponse with 202 Accepted, or the error status.
        """
        if not session_id:
            return _error_response(HTTPStatus.BAD_REQUEST, f"Missing {SESSION_ID_PARAM} query parameter")

        transport = self._sessions.get(session_id)
        if transport is None:
            return _error_response(HTTPStatus.NOT_FOUND, f"Unknown session {session_id}")

        content_type = headers.get("Content-Type", "").split(";")[0].strip().lower()
        if content_type != MEDIA_TYPE_JSON:
            return _error_response(
                HTTPStatus.UNSUPPORTED_MEDIA_TYPE, f"Unsupported Media Type: Content-Type must be {MEDIA_TYPE_JSON}"
            )

        try:
            failure = await transport.submit(body)
        except TransportClosedError:
            return _error_response(HTTPStatus.NOT_FOUND, f"Session {session_id} is closed")

        if failure is not None:
            response, _ = json_rpc.build_error_message(HandlerError(ErrorKind.PARSE_ERROR, str(failure.error)), None)
            return MCPHTTPResponse(HTTPStatus.BAD_REQUEST, json_rpc.encode(response))

        return MCPHTTPResponse(HTTPStatus.ACCEPTED)

    async def messages_endpoint(self, request: Request) -> Response:
        body = await request.body()
        result = await self.dispatch(request.query_params.get(SESSION_ID_PARAM), request.headers, body)
        return Response(result.content, result.status_code, result.headers, result.media_type)


def _error_response(status_code: HTTPStatus, message: str) -> MCPHTTPResponse:
    return MCPHTTPResponse(status_code, json_rpc.encode({"message": message}))

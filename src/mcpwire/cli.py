import argparse
import importlib
import logging
import os
import sys
from collections.abc import Sequence

import anyio

from mcpwire.exceptions import ConfigurationError, TransportError
from mcpwire.server import MCPServer
from mcpwire.transports.factory import DEFAULT_TRANSPORT, TRANSPORT_TAGS, create_transport, get_transport_class
from mcpwire.transports.streaming import ServerFactory, StreamingHTTPApp

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mcpwire", description="Serve an MCP server over stdio or HTTP with SSE.")
    parser.add_argument(
        "--transport",
        default=os.environ.get("MCPWIRE_TRANSPORT", DEFAULT_TRANSPORT),
        help=f"Transport to serve on: {', '.join(TRANSPORT_TAGS)} (default: %(default)s)",
    )
    parser.add_argument(
        "--server",
        default=os.environ.get("MCPWIRE_SERVER"),
        help="Server factory as 'module:callable'. Defaults to a server with only the built-in handlers.",
    )
    parser.add_argument("--name", default="mcpwire", help="Server name used by the default server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind for the streaming transport")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind for the streaming transport")
    parser.add_argument("--path", default="", help="Path prefix of the streaming endpoints")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("MCPWIRE_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument("--log-file", default=os.environ.get("MCPWIRE_LOG_FILE"), help="Also log to this file")
    return parser


def configure_logging(level: str, log_file: str | None = None) -> None:
    # stdout is reserved for protocol frames
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def load_server_factory(spec: str | None, name: str) -> ServerFactory:
    """
    Resolve the server factory.

    Raises:
        ConfigurationError: If the factory cannot be imported.
    """
    if not spec:
        return lambda: MCPServer(name)

    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Invalid server factory {spec!r}, expected 'module:callable'")

    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load server factory {spec!r}: {e}") from e

    if not callable(factory):
        raise ConfigurationError(f"Server factory {spec!r} is not callable")

    return factory


def serve_stdio(server: MCPServer) -> None:
    transport = create_transport("stdio")
    anyio.run(server.connect, transport)


def serve_streaming(server_factory: ServerFactory, host: str, port: int, path: str) -> None:
    import uvicorn

    app = StreamingHTTPApp(server_factory, path=path).as_starlette()
    uvicorn.run(app, host=host, port=port, log_config=None)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    try:
        # Fail on an unknown tag before any I/O begins
        get_transport_class(args.transport)
        server_factory = load_server_factory(args.server, args.name)

        if args.transport == "stdio":
            server = server_factory()
            if not isinstance(server, MCPServer):
                raise ConfigurationError(f"Server factory returned {type(server).__name__}, expected MCPServer")
            logger.info("Starting stdio server %s, listening for messages...", server.name)
            serve_stdio(server)
        else:
            logger.info("Starting streaming server on http://%s:%s%s/sse", args.host, args.port, args.path)
            serve_streaming(server_factory, args.host, args.port, args.path)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_FAILURE
    except TransportError as e:
        logger.error("Connection terminated: %s", e)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_INTERRUPTED

    logger.info("Server stopped")
    return EXIT_OK

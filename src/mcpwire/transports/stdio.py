import logging
import sys
from io import TextIOWrapper
from typing import TextIO

import anyio
import anyio.to_thread

from mcpwire.exceptions import ProtocolParseError, TransportError
from mcpwire.transports.base import Transport
from mcpwire.types import END_OF_STREAM, MESSAGE_ENCODING, Message, ParseFailure, ReadResult
from mcpwire.utils import json_rpc

logger = logging.getLogger(__name__)


class StdioTransport(Transport):
    """stdio transport implementation per MCP specification.
    https://modelcontextprotocol.io/specification/2024-11-05/basic/transports#stdio

    - The server reads JSON-RPC messages from its standard input (stdin)
    - The server sends messages to its standard output (stdout)
    - Messages are delimited by newlines and MUST NOT contain embedded newlines
    - The server MUST NOT write anything to stdout that is not a valid MCP message

    When no stdout stream is passed in, the transport takes exclusive ownership of the process
    stdout: sys.stdout is pointed at sys.stderr until the transport is closed, so a stray print()
    cannot corrupt the protocol stream. Every frame is flushed as soon as it is written.

    **IMPORTANT - Logging Configuration:**
    Applications MUST configure logging to write to stderr (not stdout). The specification
    states: "The server MAY write UTF-8 strings to its standard error (stderr) for logging purposes."

    Example logging configuration:
        logging.basicConfig(
            level=logging.DEBUG,
            handlers=[logging.StreamHandler(sys.stderr)]
        )

    Implementation details:
    - A line is a single frame. A line that is not valid JSON is a ParseFailure, and is
      connection-fatal since a line-oriented stream cannot resynchronize after a corrupt frame.
    - Blocking reads run in a worker thread that is abandoned when the read is cancelled, so
      close() unblocks a pending read_message() immediately.
    """

    parse_failure_is_fatal = True

    stdin: TextIO
    stdout: TextIO

    _owns_stdout: bool
    _saved_stdout: TextIO | None

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """
        Args:
            stdin: Optional stdin stream to use. Defaults to the process stdin.
            stdout: Optional stdout stream to use. Defaults to the process stdout.
        """
        super().__init__()

        self.stdin = stdin or TextIOWrapper(sys.stdin.buffer, encoding=MESSAGE_ENCODING)

        self._owns_stdout = stdout is None
        self._saved_stdout = None
        if stdout is None:
            self.stdout = TextIOWrapper(sys.stdout.buffer, encoding=MESSAGE_ENCODING, write_through=True)
            self._saved_stdout = sys.stdout
            sys.stdout = sys.stderr
        else:
            self.stdout = stdout

    async def _receive(self) -> ReadResult:
        while True:
            try:
                line = await anyio.to_thread.run_sync(self.stdin.readline, abandon_on_cancel=True)
            except UnicodeDecodeError as e:
                return ParseFailure("", e)
            except (OSError, ValueError) as e:
                # ValueError is raised when reading from a closed file
                raise TransportError(f"Failed to read from stdin: {e}") from e

            if not line:
                logger.debug("Reached end of stdin")
                return END_OF_STREAM

            frame = line.strip()
            if not frame:
                continue

            try:
                return json_rpc.decode(frame)
            except ProtocolParseError as e:
                return ParseFailure(frame, e)

    async def _send(self, message: Message) -> None:
        frame = json_rpc.encode(message)
        logger.debug("Writing message to stdio: %s", frame)

        try:
            await anyio.to_thread.run_sync(self._write_line, frame)
        except (OSError, ValueError) as e:
            raise TransportError(f"Failed to write to stdout: {e}") from e

    def _write_line(self, frame: str) -> None:
        self.stdout.write(frame + "\n")
        self.stdout.flush()

    async def _release(self) -> None:
        if not self._owns_stdout:
            return

        try:
            self.stdout.flush()
            # Detach so that the process stdout buffer stays open after the wrapper is collected
            if isinstance(self.stdout, TextIOWrapper):
                self.stdout.detach()
        except (OSError, ValueError):
            logger.debug("Failed to release stdout", exc_info=True)
        finally:
            if self._saved_stdout is not None and sys.stdout is sys.stderr:
                sys.stdout = self._saved_stdout
            self._saved_stdout = None

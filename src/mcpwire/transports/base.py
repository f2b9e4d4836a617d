import logging
from abc import ABC, abstractmethod
from typing import ClassVar

import anyio

from mcpwire.exceptions import TransportClosedError
from mcpwire.types import END_OF_STREAM, Message, ReadResult

logger = logging.getLogger(__name__)


class Transport(ABC):
    """
    Reads and writes discrete JSON messages over a concrete channel.

    A transport is bound to exactly one MCPServer. The server reads one message at a time
    with read_message(), and writes responses and notifications with write_message().

    Contract:
        - read_message() waits for one complete message and returns the decoded JSON value,
          END_OF_STREAM when the peer closed the channel, or a ParseFailure for a malformed frame.
        - write_message() serializes and flushes exactly one message. Concurrent writers are
          serialized, so frames never interleave.
        - close() releases the I/O resources and unblocks a pending read_message(). Repeated
          calls are no-ops.

    Subclasses implement _receive(), _send() and optionally _release().
    """

    # Whether a frame that cannot be decoded terminates the connection.
    parse_failure_is_fatal: ClassVar[bool] = True

    _closed: bool
    _write_lock: anyio.Lock
    _read_scope: anyio.CancelScope | None

    def __init__(self) -> None:
        self._closed = False
        self._write_lock = anyio.Lock()
        self._read_scope = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def read_message(self) -> ReadResult:
        """
        Wait for the next message.

        Returns:
            The decoded message, END_OF_STREAM or a ParseFailure.

        Raises:
            TransportError: On an I/O failure.
        """
        if self._closed:
            return END_OF_STREAM

        with anyio.CancelScope() as scope:
            self._read_scope = scope
            try:
                return await self._receive()
            finally:
                self._read_scope = None

        # Only reached when close() cancelled the pending read
        return END_OF_STREAM

    async def write_message(self, message: Message) -> None:
        """
        Serialize and flush one message.

        Args:
            message: The message to write.

        Raises:
            TransportClosedError: If the transport is closed.
            TransportError: On an I/O failure.
        """
        async with self._write_lock:
            if self._closed:
                raise TransportClosedError(f"{self.__class__.__name__} is closed")
            await self._send(message)

    async def close(self) -> None:
        """Close the transport. Idempotent."""
        if self._closed:
            return

        self._closed = True
        logger.debug("Closing %s", self.__class__.__name__)

        if self._read_scope is not None:
            self._read_scope.cancel()

        await self._release()

    @abstractmethod
    async def _receive(self) -> ReadResult:
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    async def _send(self, message: Message) -> None:
        raise NotImplementedError("Subclasses must implement this method")

    async def _release(self) -> None:
        pass

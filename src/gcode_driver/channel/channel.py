"""
Byte-Stream Channel - Base class for transports.

This module provides the ByteStreamChannel base class which defines the narrow
contract the protocol session depends on: connect, disconnect, write one line,
read one line with a timeout. Subclasses only implement how the underlying
asyncio transport is opened.
"""

import asyncio

from gcode_driver.channel.protocol import LineProtocol
from gcode_driver.core.logging import get_logger
from gcode_driver.core.utils import TransportError

logger = get_logger()

MAX_LINE_QUEUE_SIZE = 1000  # reply lines
LINE_ENDING = "\n"


class ByteStreamChannel:
    """
    Base class for line-oriented channels.

    Reply lines are collected by a LineProtocol into a queue, from which
    read_line() takes them one at a time. The channel never interprets the
    lines; correlating them with commands is the session's job.
    """

    def __init__(self, connect_timeout: float = 3000.0):
        """
        Initialize the channel.

        Args:
            connect_timeout: Timeout in ms for establishing the connection.
        """
        self.connect_timeout = connect_timeout / 1000

        self._line_queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=MAX_LINE_QUEUE_SIZE)
        self._protocol: LineProtocol | None = None
        self._disconnect_event = asyncio.Event()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if the channel is connected."""
        return self._connected and not self._disconnect_event.is_set()

    @property
    def description(self) -> str:
        return type(self).__name__

    def _protocol_factory(self) -> LineProtocol:
        return LineProtocol(
            line_queue=self._line_queue, disconnect_event=self._disconnect_event
        )

    async def _open(self) -> LineProtocol | None:
        """
        Open the underlying transport and return its protocol.

        Subclasses must override this.
        """
        raise NotImplementedError

    async def connect(self) -> None:
        """
        Connect the channel.

        Raises:
            TransportError: If the transport cannot be opened in time.
        """
        if self.is_connected:
            logger.warning(f"Already connected to {self.description}")
            return

        self._line_queue = asyncio.Queue(maxsize=MAX_LINE_QUEUE_SIZE)
        self._disconnect_event = asyncio.Event()

        try:
            self._protocol = await asyncio.wait_for(self._open(), timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Timed out connecting to {self.description} "
                f"after {self.connect_timeout * 1000:.0f}ms"
            ) from e
        except OSError as e:
            raise TransportError(f"Failed to connect to {self.description}: {e}") from e

        self._connected = True
        logger.info(f"Connected to {self.description}")

    async def disconnect(self) -> None:
        """Disconnect the channel. Disconnecting a closed channel is a no-op."""
        if self._protocol:
            try:
                self._protocol.close()
            except OSError as e:
                logger.warning(f"Error closing {self.description}: {e}")
            finally:
                self._protocol = None

        if self._connected:
            self._connected = False
            logger.info(f"Disconnected from {self.description}")

    async def write_line(self, text: str) -> None:
        """
        Write one command line, terminated by a newline.

        Raises:
            TransportError: If the channel is not connected.
        """
        if not self.is_connected or not self._protocol:
            raise TransportError(f"{self.description} is not connected")

        self._protocol.write(text.rstrip("\r\n") + LINE_ENDING)

    async def read_line(self, timeout: float | None = None) -> str:
        """
        Read the next reply line.

        Args:
            timeout: Seconds to wait for a line, or None to wait forever.

        Returns:
            The normalized reply line.

        Raises:
            asyncio.TimeoutError: If no line arrives in time.
            TransportError: If the connection is lost while waiting.
        """
        if not self.is_connected and self._line_queue.empty():
            raise TransportError(f"{self.description} is not connected")

        line = await asyncio.wait_for(self._line_queue.get(), timeout=timeout)

        if line is None:
            raise TransportError(f"Connection to {self.description} lost")

        return line

    def flush_input(self) -> list[str]:
        """
        Discard any reply lines that have not been read yet, along with a
        partial line still waiting for its newline.

        Returns:
            The discarded lines, for diagnostics.
        """
        if self._protocol:
            self._protocol.flush_input()

        discarded: list[str] = []
        while not self._line_queue.empty():
            line = self._line_queue.get_nowait()
            if line is None:
                # Keep the disconnect visible to the next reader
                self._line_queue.put_nowait(None)
                break
            discarded.append(line)

        return discarded

    async def __aenter__(self) -> "ByteStreamChannel":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.disconnect()

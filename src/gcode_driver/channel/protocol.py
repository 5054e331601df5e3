"""
Line Protocol - ASCII line framing for byte-stream transports.

This module provides the LineProtocol class, an asyncio.Protocol that turns
the raw bytes of a TCP or serial transport into normalized reply lines.
"""

import asyncio
from typing import TYPE_CHECKING, cast

from gcode_driver.core.logging import get_logger, log_gcode_recv, log_gcode_sent
from gcode_driver.core.utils import TransportError, normalize_line

if TYPE_CHECKING:
    from asyncio import Event, Queue

logger = get_logger()


class LineProtocol(asyncio.Protocol):
    """
    asyncio.Protocol implementation for line-oriented device communication.

    Incoming data is decoded as ASCII, buffered until a newline arrives and
    pushed to a queue one normalized line at a time. When the connection is
    lost, None is pushed so a pending reader wakes up immediately.
    """

    def __init__(
        self,
        line_queue: "Queue[str | None]",
        disconnect_event: "Event | None" = None,
    ):
        """
        Initialize the protocol.

        Args:
            line_queue: An asyncio Queue to receive parsed reply lines.
            disconnect_event: An optional asyncio Event that will be set when
                the connection is lost.
        """
        self.line_queue = line_queue
        self.disconnect_event = disconnect_event
        self._input_buffer: str = ""
        self.transport: asyncio.Transport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        """Called when the connection is established."""
        self.transport = cast(asyncio.Transport, transport)
        logger.debug("Channel connection established")

    def connection_lost(self, exc: Exception | None) -> None:
        """Called when the connection is lost."""
        logger.debug(f"Channel connection lost: {exc}")
        self.transport = None

        try:
            self.line_queue.put_nowait(None)
        except asyncio.QueueFull:
            logger.warning("Reply line queue full, disconnect signalled by event only")

        if self.disconnect_event:
            self.disconnect_event.set()

    def data_received(self, data: bytes) -> None:
        """
        Called when data is received from the device.

        Decodes data as ASCII (undecodable bytes are replaced and logged),
        buffers it, and pushes complete lines to the line queue.

        Args:
            data: Raw bytes received from the device.
        """
        logger.verbose(f"Raw data received: {data!r}")

        try:
            decoded_data = data.decode("ascii")
        except UnicodeDecodeError as e:
            logger.warning(f"Failed to decode device data as ASCII (potential garbage): {e}")
            decoded_data = data.decode("ascii", errors="replace")

        self._input_buffer += decoded_data

        *complete, self._input_buffer = self._input_buffer.split("\n")

        for raw_line in complete:
            line = normalize_line(raw_line)
            if not line:
                continue

            log_gcode_recv(line)
            try:
                self.line_queue.put_nowait(line)
            except asyncio.QueueFull:
                logger.warning(f"Reply line queue full, dropping line: {line!r}")

    def write(self, data: str) -> None:
        """
        Write a string to the device, encoded as ASCII.

        Raises:
            TransportError: If the transport is not available.
            UnicodeEncodeError: If the string cannot be encoded as ASCII.
        """
        if not self.transport or self.transport.is_closing():
            raise TransportError("Cannot write data - transport not available")

        try:
            encoded_data = data.encode("ascii")
        except UnicodeEncodeError as e:
            logger.error(f"Failed to encode command as ASCII: {e}")
            raise

        self.transport.write(encoded_data)
        log_gcode_sent(data.strip())
        logger.verbose(f"Raw data sent: {encoded_data!r}")

    def flush_input(self) -> None:
        """Drop any partial line that is still buffered."""
        self._input_buffer = ""

    def close(self) -> None:
        """Close the underlying transport."""
        if self.transport:
            self.transport.close()
            logger.debug("Channel connection closed")

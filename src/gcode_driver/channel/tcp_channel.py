"""
TCP Channel - Talk to a controller exposed on a TCP port.

Many motion controllers (and serial-to-network bridges) accept the same line
protocol over a raw TCP socket as they do over USB serial.
"""

import asyncio
import socket

from gcode_driver.channel.channel import ByteStreamChannel
from gcode_driver.channel.protocol import LineProtocol


class TcpChannel(ByteStreamChannel):
    """Byte-stream channel over a TCP connection."""

    def __init__(
        self,
        address: str = "localhost",
        port: int = 23,
        connect_timeout: float = 3000.0,  # ms
    ):
        """
        Initialize the TCP channel.

        Args:
            address: Host name or IP address of the controller.
            port: TCP port of the controller.
            connect_timeout: Timeout in ms for establishing the connection.
        """
        super().__init__(connect_timeout=connect_timeout)
        self.address = address
        self.port = port

    @property
    def description(self) -> str:
        return f"{self.address}:{self.port}"

    async def _open(self) -> LineProtocol:
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_connection(
            self._protocol_factory, self.address, self.port
        )

        sock = transport.get_extra_info("socket")
        if sock is not None:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        return protocol

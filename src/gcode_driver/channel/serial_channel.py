"""
Serial Channel - Talk to a controller over a serial port.

This module provides the SerialChannel class which opens the port with
pyserial-asyncio and frames replies with the shared LineProtocol.
"""

import asyncio

import serial
import serial_asyncio

from gcode_driver.channel.channel import ByteStreamChannel
from gcode_driver.channel.protocol import LineProtocol
from gcode_driver.core.utils import TransportError


class SerialChannel(ByteStreamChannel):
    """Byte-stream channel over a serial port."""

    def __init__(
        self,
        dev_path: str,
        baud_rate: int = 115200,
        connect_timeout: float = 3000.0,  # ms
    ):
        """
        Initialize the serial channel.

        Args:
            dev_path: Device path like /dev/ttyACM0 or COM3.
            baud_rate: Serial baud rate for communication.
            connect_timeout: Timeout in ms for opening the port.

        Raises:
            ValueError: If no device path is given.
        """
        if not dev_path:
            raise ValueError("Must specify a serial device path")

        super().__init__(connect_timeout=connect_timeout)
        self.dev_path = dev_path
        self.baud_rate = baud_rate

    @property
    def description(self) -> str:
        return f"{self.dev_path} at {self.baud_rate} baud"

    async def _open(self) -> LineProtocol:
        loop = asyncio.get_running_loop()

        try:
            _, protocol = await serial_asyncio.create_serial_connection(
                loop,
                self._protocol_factory,
                self.dev_path,
                baudrate=self.baud_rate,
            )
        except serial.SerialException as e:
            raise TransportError(f"Failed to open serial port {self.dev_path}: {e}") from e

        return protocol

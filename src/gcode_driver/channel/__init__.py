"""
Channel package - Byte-stream transports for the GCode driver.

This package provides:
- ByteStreamChannel: Base class with the line read/write contract
- TcpChannel: Controller reachable over TCP
- SerialChannel: Controller on a serial port (pyserial-asyncio)
- DryRunChannel: In-process simulated controller (no hardware)
- LineProtocol: asyncio.Protocol framing replies into lines
"""

from .channel import ByteStreamChannel
from .dry_run_channel import DryRunChannel
from .protocol import LineProtocol
from .serial_channel import SerialChannel
from .tcp_channel import TcpChannel

__all__ = [
    "ByteStreamChannel",
    "DryRunChannel",
    "LineProtocol",
    "SerialChannel",
    "TcpChannel",
]

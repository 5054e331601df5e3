"""GCode Driver - A command/response engine for motion-control hardware."""

__version__ = "0.1.0"

from .core import (
    CommandError,
    ConfigurationError,
    GcodeDriverError,
    InvalidPatternError,
    MissingCommandError,
    MissingPatternError,
    NoMatchError,
    ProtocolError,
    ProtocolTimeoutError,
    RegistryLockedError,
    SessionBusyError,
    TaskSerializer,
    TransportError,
)
from .protocol import (
    GLOBAL,
    CommandKind,
    CommandRegistry,
    ExchangeResult,
    ProtocolSession,
    ResponsePattern,
    Subject,
)
from .channel import ByteStreamChannel, DryRunChannel, SerialChannel, TcpChannel
from .simulator import CommandResponder, GcodeServer
from .core.config import Config
from .driver import GcodeDriver

__all__ = [
    "CommandError",
    "ConfigurationError",
    "GcodeDriverError",
    "InvalidPatternError",
    "MissingCommandError",
    "MissingPatternError",
    "NoMatchError",
    "ProtocolError",
    "ProtocolTimeoutError",
    "RegistryLockedError",
    "SessionBusyError",
    "TaskSerializer",
    "TransportError",
    "GLOBAL",
    "CommandKind",
    "CommandRegistry",
    "ExchangeResult",
    "ProtocolSession",
    "ResponsePattern",
    "Subject",
    "ByteStreamChannel",
    "DryRunChannel",
    "SerialChannel",
    "TcpChannel",
    "CommandResponder",
    "GcodeServer",
    "Config",
    "GcodeDriver",
    "__version__",
]

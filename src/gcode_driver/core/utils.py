"""
Errors and small helpers shared by the driver.

Configuration errors (missing templates or patterns, bad pattern text) are
raised before anything is written to the channel. Protocol errors describe
what went wrong during one exchange and are carried on the exchange result.
"""

import re

TERMINAL_MARKER = "ok"


class GcodeDriverError(Exception):
    """Base class for all driver errors."""

    pass


class ConfigurationError(GcodeDriverError):
    """Raised when the command/pattern configuration is incomplete or invalid."""

    pass


class MissingCommandError(ConfigurationError):
    """Raised when no command template is registered for a subject and kind."""

    def __init__(self, subject, kind):
        self.subject = subject
        self.kind = kind
        super().__init__(f"No {kind.value} command configured for {subject}")


class MissingPatternError(ConfigurationError):
    """Raised when a read command has no response pattern registered."""

    def __init__(self, subject, kind):
        self.subject = subject
        self.kind = kind
        super().__init__(f"No {kind.value} response pattern configured for {subject}")


class InvalidPatternError(ConfigurationError):
    """Raised when response pattern text cannot be compiled."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        super().__init__(f"Invalid response pattern {pattern!r}: {reason}")


class RegistryLockedError(ConfigurationError):
    """Raised when the registry is modified while the driver is enabled."""

    pass


class ProtocolError(GcodeDriverError):
    """Base class for failures observed while exchanging a command."""

    def __init__(self, message: str, command: str = "", lines: list[str] | None = None):
        self.command = command
        self.lines = list(lines or [])
        super().__init__(message)


class NoMatchError(ProtocolError):
    """Raised when the terminal marker arrived but the pattern never matched."""

    pass


class ProtocolTimeoutError(ProtocolError):
    """Raised when the device did not finish responding before the deadline."""

    pass


class CommandError(ProtocolError):
    """Raised when the device answered a command with an error line."""

    pass


class TransportError(GcodeDriverError, ConnectionError):
    """Raised when the channel is closed or fails during I/O."""

    pass


class SessionBusyError(GcodeDriverError):
    """Raised when an exchange is started while another one is in flight."""

    pass


def normalize_line(raw_line: str) -> str:
    """
    Normalize a single raw line of device output.

    Strips surrounding whitespace and carriage returns. The result may be
    empty, in which case the caller should discard it.

    Example:
        >>> normalize_line("ok\\r")
        "ok"
    """
    return raw_line.strip()


def is_terminal_marker(line: str) -> bool:
    """Check if a line is the terminal marker, matched verbatim."""
    return line == TERMINAL_MARKER


def split_command_lines(text: str) -> list[str]:
    """
    Split filled command text into the lines that are sent one by one.

    Blank lines are dropped; each remaining line keeps its text, including any
    trailing comment, exactly as configured.
    """
    return [line.strip() for line in re.split(r"\r?\n", text) if line.strip()]

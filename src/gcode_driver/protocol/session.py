"""
Protocol Session - One command, one reply sequence.

The session writes a single command line and collects reply lines until the
device sends the terminal marker ("ok"). Replies have no framing beyond line
breaks, so every exchange waits for the terminal marker before it releases
the channel; otherwise trailing lines of one command would be read as the
reply to the next. Lines left over from an earlier exchange (for example one
that timed out) are discarded before the next command is written.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from gcode_driver.channel.channel import ByteStreamChannel
from gcode_driver.core.logging import get_logger
from gcode_driver.core.utils import (
    CommandError,
    NoMatchError,
    ProtocolError,
    ProtocolTimeoutError,
    SessionBusyError,
    is_terminal_marker,
)
from gcode_driver.protocol.matcher import ResponsePattern

logger = get_logger()

DEFAULT_RESPONSE_TIMEOUT = 5000.0  # ms


class SessionState(Enum):
    """States of the protocol session."""

    IDLE = "idle"
    AWAITING_REPLY = "awaiting-reply"
    COMPLETED = "completed"


@dataclass
class PendingExchange:
    """
    The in-flight exchange.

    Attributes:
        command: The filled command line that was written.
        pattern: Response pattern to extract a value with, if any.
        deadline: Event loop time by which the exchange must finish.
        lines: Reply lines received so far, in order.
        matched: Whether the pattern has matched a line yet.
        value: Value captured by the first matching line.
    """

    command: str
    pattern: ResponsePattern | None
    deadline: float
    lines: list[str] = field(default_factory=list)
    matched: bool = False
    value: str | None = None


@dataclass
class ExchangeResult:
    """
    Outcome of one exchange.

    Attributes:
        command: The command line that was written.
        success: Whether the exchange succeeded.
        terminal: The terminal line seen, or None if it never arrived.
        value: Value extracted by the response pattern, if any.
        lines: All reply lines received, including the terminal line.
        error: The protocol error describing a failure, None on success.
    """

    command: str
    success: bool
    terminal: str | None = None
    value: str | None = None
    lines: list[str] = field(default_factory=list)
    error: ProtocolError | None = None

    def raise_for_outcome(self) -> "ExchangeResult":
        """Raise the carried error if the exchange failed, else return self."""
        if self.error is not None:
            raise self.error
        return self


class ProtocolSession:
    """
    Runs command exchanges over a channel, one at a time.

    The session does not queue callers: starting an exchange while another
    one is in flight raises SessionBusyError. Admission of concurrent callers
    is the task serializer's job.
    """

    def __init__(
        self,
        channel: ByteStreamChannel,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,  # ms
        error_pattern: ResponsePattern | None = None,
    ):
        """
        Initialize the session.

        Args:
            channel: The channel to exchange lines over.
            response_timeout: Default timeout in ms for one exchange.
            error_pattern: Optional pattern marking a reply line as an error.
        """
        self.channel = channel
        self.response_timeout = response_timeout / 1000
        self.error_pattern = error_pattern

        self._state = SessionState.IDLE
        self._pending: PendingExchange | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pending(self) -> PendingExchange | None:
        return self._pending

    async def exchange(
        self,
        command: str,
        pattern: ResponsePattern | None = None,
        timeout: float | None = None,
    ) -> ExchangeResult:
        """
        Send one command line and collect its replies.

        Args:
            command: The filled command line.
            pattern: Response pattern to extract a value with. When given,
                the exchange fails with NoMatchError if the terminal marker
                arrives without any line having matched.
            timeout: Timeout in seconds, defaults to the session timeout.

        Returns:
            The exchange result. Protocol failures (timeout, no match, error
            reply) are reported on the result rather than raised.

        Raises:
            SessionBusyError: If another exchange is in flight.
            TransportError: If the channel fails; the session is idle again
                afterwards.
        """
        if self._state is not SessionState.IDLE:
            raise SessionBusyError(
                f"Cannot send {command!r}: exchange for "
                f"{self._pending.command if self._pending else '?'!r} in flight"
            )

        loop = asyncio.get_running_loop()
        timeout = self.response_timeout if timeout is None else timeout

        stale = self.channel.flush_input()
        if stale:
            logger.debug(f"Discarded {len(stale)} stale line(s) before sending: {stale}")

        pending = PendingExchange(
            command=command,
            pattern=pattern,
            deadline=loop.time() + timeout,
        )
        self._pending = pending
        self._state = SessionState.AWAITING_REPLY

        try:
            logger.debug(f"Sending: {command!r}")
            await self.channel.write_line(command)
            result = await self._collect_replies(pending, loop)
            self._state = SessionState.COMPLETED
        finally:
            self._pending = None
            self._state = SessionState.IDLE

        if result.success:
            logger.debug(f"Completed {command!r}: {result.lines}")
        else:
            logger.warning(f"Failed {command!r}: {result.error}")

        return result

    async def _collect_replies(
        self, pending: PendingExchange, loop: asyncio.AbstractEventLoop
    ) -> ExchangeResult:
        while True:
            remaining = pending.deadline - loop.time()
            if remaining <= 0:
                return self._timed_out(pending)

            try:
                line = await self.channel.read_line(timeout=remaining)
            except asyncio.TimeoutError:
                return self._timed_out(pending)

            logger.verbose(f"Reply to {pending.command!r}: {line!r}")
            pending.lines.append(line)

            if pending.pattern is not None and not pending.matched:
                result = pending.pattern.match(line)
                if result.matched:
                    pending.matched = True
                    pending.value = result.value

            if is_terminal_marker(line):
                return self._terminated(pending, line)

            if self.error_pattern is not None and self.error_pattern.match(line).matched:
                return ExchangeResult(
                    command=pending.command,
                    success=False,
                    terminal=line,
                    lines=pending.lines,
                    error=CommandError(
                        f"Device reported an error for {pending.command!r}: {line}",
                        command=pending.command,
                        lines=pending.lines,
                    ),
                )

    def _terminated(self, pending: PendingExchange, terminal: str) -> ExchangeResult:
        if pending.pattern is not None and not pending.matched:
            return ExchangeResult(
                command=pending.command,
                success=False,
                terminal=terminal,
                lines=pending.lines,
                error=NoMatchError(
                    f"Response pattern {pending.pattern.text!r} did not match any reply "
                    f"to {pending.command!r}: {pending.lines}",
                    command=pending.command,
                    lines=pending.lines,
                ),
            )

        return ExchangeResult(
            command=pending.command,
            success=True,
            terminal=terminal,
            value=pending.value,
            lines=pending.lines,
        )

    def _timed_out(self, pending: PendingExchange) -> ExchangeResult:
        if pending.matched:
            logger.warning(
                f"Terminal marker for {pending.command!r} not received, "
                f"keeping matched value {pending.value!r}"
            )
            return ExchangeResult(
                command=pending.command,
                success=True,
                value=pending.value,
                lines=pending.lines,
            )

        return ExchangeResult(
            command=pending.command,
            success=False,
            lines=pending.lines,
            error=ProtocolTimeoutError(
                f"Timeout waiting for response to {pending.command!r}, "
                f"received: {pending.lines}",
                command=pending.command,
                lines=pending.lines,
            ),
        )

"""
GCode Driver - Typed machine operations on top of the protocol session.

This module provides the GcodeDriver class. It resolves command templates and
response patterns from the registry, fills them with operation values, and
runs the resulting exchanges through the task serializer so that concurrent
callers never interleave on the channel.
"""

import asyncio
from typing import Any

from gcode_driver.channel import ByteStreamChannel, DryRunChannel, SerialChannel, TcpChannel
from gcode_driver.core.config import Config
from gcode_driver.core.logging import get_logger
from gcode_driver.core.task import TaskSerializer
from gcode_driver.core.utils import NoMatchError, TransportError, split_command_lines
from gcode_driver.protocol.matcher import ResponsePattern
from gcode_driver.protocol.registry import (
    GLOBAL,
    CommandKind,
    CommandRegistry,
    CommandTemplate,
    Subject,
)
from gcode_driver.protocol.session import (
    DEFAULT_RESPONSE_TIMEOUT,
    ExchangeResult,
    ProtocolSession,
)
from gcode_driver.simulator import CommandResponder

logger = get_logger()

AXIS_NAMES = ("X", "Y", "Z", "Rotation")


def create_channel(config: Config) -> ByteStreamChannel:
    """
    Create the channel described by the configuration.

    Args:
        config: Loaded configuration.

    Returns:
        A TcpChannel, SerialChannel or DryRunChannel.
    """
    channel = config.channel

    if channel.type == "serial":
        if not channel.path:
            raise ValueError("Must specify a serial device path")
        return SerialChannel(
            dev_path=channel.path,
            baud_rate=channel.baud_rate,
            connect_timeout=channel.connect_timeout,
        )

    if channel.type == "dry-run":
        return DryRunChannel(
            responder=CommandResponder(
                responses=config.simulator.responses,
                default_response=config.simulator.default_response,
            )
        )

    return TcpChannel(
        address=channel.address,
        port=channel.port,
        connect_timeout=channel.connect_timeout,
    )


class GcodeDriver:
    """
    Drives a machine through configurable command templates.

    Lifecycle: connect() opens the channel, initialize() runs the setup
    sequence, and enable() does both and locks the registry. Operations
    (read, actuate, move_to, home, wait_for_idle) may then be called from any
    number of concurrent tasks. disable() releases the registry and, unless
    keep-alive is set, closes the channel.
    """

    def __init__(
        self,
        channel: ByteStreamChannel,
        registry: CommandRegistry | None = None,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,  # ms
        connect_wait_time: float = 0.0,  # ms
        connection_keep_alive: bool = True,
        queue_size: int = 50,
    ):
        """
        Initialize the driver.

        Args:
            channel: The channel to the machine.
            registry: Command templates and patterns. Defaults to the default
                command set.
            response_timeout: Timeout in ms for each command exchange.
            connect_wait_time: Delay in ms after connecting before the first
                command, for controllers that reset on connect.
            connection_keep_alive: Keep the channel open when disabled.
            queue_size: Maximum number of operations waiting for the channel.
        """
        self.channel = channel
        self.registry = registry if registry is not None else CommandRegistry.with_defaults()
        self.connect_wait_time = connect_wait_time / 1000
        self.connection_keep_alive = connection_keep_alive

        self.session = ProtocolSession(
            channel=channel,
            response_timeout=response_timeout,
            error_pattern=self.registry.error_pattern,
        )
        self.serializer = TaskSerializer(queue_size=queue_size)

        self._enabled = False

    @classmethod
    def from_config(cls, config: Config) -> "GcodeDriver":
        """
        Build a driver, its channel and its registry from configuration.

        Raises:
            InvalidPatternError: If a configured pattern does not compile.
        """
        return cls(
            channel=create_channel(config),
            registry=config.build_registry(),
            response_timeout=config.channel.response_timeout,
            connect_wait_time=config.channel.connect_wait_time,
            connection_keep_alive=config.channel.keep_alive,
            queue_size=config.queue_limit,
        )

    @property
    def is_connected(self) -> bool:
        return self.channel.is_connected

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    async def connect(self) -> None:
        """
        Connect the channel and start admitting operations.

        Raises:
            TransportError: If the channel cannot be opened.
        """
        if not self.channel.is_connected:
            await self.channel.connect()

            if self.connect_wait_time:
                await asyncio.sleep(self.connect_wait_time)

            # Drop any startup banner the controller printed
            discarded = self.channel.flush_input()
            if discarded:
                logger.debug(f"Discarded startup output: {discarded}")

        self.session.error_pattern = self.registry.error_pattern
        self.serializer.start()

    async def initialize(self) -> None:
        """
        Run the setup sequence as one uninterrupted operation.

        Sends the connect (mode/units) and enable commands if configured, then
        the home command and the wait-for-completion command. The first
        failing command aborts the sequence.

        Raises:
            MissingCommandError: If the home or wait command is not configured.
            ProtocolError: If any command fails.
        """
        setup = [
            self.registry.resolve_command(GLOBAL, kind)
            for kind in (CommandKind.CONNECT, CommandKind.ENABLE)
            if self.registry.has_command(GLOBAL, kind)
        ]
        home = self.registry.resolve_command(GLOBAL, CommandKind.HOME)
        wait = self.registry.resolve_command(GLOBAL, CommandKind.MOVE_TO_COMPLETE)

        async def run_sequence() -> None:
            for template in (*setup, home, wait):
                await self._run_template(template)

        logger.info("Initializing machine")
        await self.serializer.execute(run_sequence, name="initialize")
        logger.info("Machine initialized")

    async def enable(self) -> None:
        """Connect, initialize and lock the registry for the session."""
        await self.connect()
        await self.initialize()
        self.registry.freeze()
        self._enabled = True
        logger.info("Driver enabled")

    async def disable(self) -> None:
        """
        Send the disable command (if configured) and unlock the registry.

        The channel is closed unless keep-alive is set, also when the disable
        command fails. A channel that is already closed is tolerated.
        """
        try:
            if self.channel.is_connected and self.registry.has_command(
                GLOBAL, CommandKind.DISABLE
            ):
                template = self.registry.resolve_command(GLOBAL, CommandKind.DISABLE)
                await self.serializer.execute(
                    lambda: self._run_template(template), name="disable"
                )
        except TransportError as e:
            logger.warning(f"Channel closed while disabling: {e}")
        finally:
            self.registry.unfreeze()
            self._enabled = False
            logger.info("Driver disabled")

            if not self.connection_keep_alive:
                await self.disconnect()

    async def disconnect(self) -> None:
        """Stop admitting operations and close the channel."""
        await self.serializer.stop()
        await self.channel.disconnect()

    async def read(self, subject: Subject | str) -> str:
        """
        Read a value from an actuator or sensor.

        Returns:
            The text captured by the pattern's Value group. If the pattern has
            no Value group, the whole matching line is returned.

        Raises:
            MissingCommandError: If no read command is configured.
            MissingPatternError: If no read pattern is configured.
            NoMatchError: If the reply never matched the pattern.
            ProtocolTimeoutError: If the device did not answer in time.
        """
        subject = Subject.of(subject)
        template = self.registry.resolve_command(subject, CommandKind.ACTUATOR_READ)
        pattern = self.registry.resolve_pattern(subject, CommandKind.ACTUATOR_READ)

        results = await self.serializer.execute(
            lambda: self._run_template(template, pattern=pattern, **self._variables(subject)),
            name=f"read {subject}",
        )

        for result in results:
            if result.value is not None:
                return result.value

        # Pattern without a Value group: report the line that matched
        for result in results:
            for line in result.lines:
                if pattern.match(line).matched:
                    return line

        return ""

    async def actuate(self, subject: Subject | str, value: bool | float | int) -> None:
        """
        Drive an actuator output.

        Booleans use the actuate-boolean command and set the ``True`` or
        ``False`` template variable; numbers use the actuate-double command.
        Both set ``Value``.
        """
        subject = Subject.of(subject)

        if isinstance(value, bool):
            kind = CommandKind.ACTUATE_BOOLEAN
            variables = {"True": True if value else None, "False": None if value else True}
        else:
            kind = CommandKind.ACTUATE_DOUBLE
            variables = {}

        template = self.registry.resolve_command(subject, kind)
        await self.serializer.execute(
            lambda: self._run_template(
                template, Value=value, **variables, **self._variables(subject)
            ),
            name=f"actuate {subject}={value}",
        )

    async def write(self, subject: Subject | str, value: bool | float | int) -> None:
        """Alias of actuate()."""
        await self.actuate(subject, value)

    async def move_to(
        self,
        subject: Subject | str | None = None,
        feed_rate: float | None = None,
        wait: bool = False,
        **axes: float,
    ) -> None:
        """
        Move to a coordinate.

        Args:
            subject: The head or axis group to move; None for the machine.
            feed_rate: Optional feed rate for the ``FeedRate`` variable.
            wait: Also send the wait-for-completion command, in the same
                operation.
            **axes: Target coordinates by axis name (X, Y, Z, Rotation).
                Axes that are not given are left out of the command.

        Raises:
            ValueError: If an unknown axis name is given.
        """
        unknown = set(axes) - set(AXIS_NAMES)
        if unknown:
            raise ValueError(f"Unknown axes: {', '.join(sorted(unknown))}")

        subject = Subject.of(subject)
        template = self.registry.resolve_command(subject, CommandKind.MOVE_TO)
        complete = (
            self.registry.resolve_command(subject, CommandKind.MOVE_TO_COMPLETE) if wait else None
        )

        async def run_move() -> None:
            await self._run_template(
                template, FeedRate=feed_rate, **axes, **self._variables(subject)
            )
            if complete is not None:
                await self._run_template(complete, **self._variables(subject))

        await self.serializer.execute(run_move, name=f"move {subject} {axes}")

    async def home(self) -> None:
        """Home the machine."""
        template = self.registry.resolve_command(GLOBAL, CommandKind.HOME)
        await self.serializer.execute(lambda: self._run_template(template), name="home")

    async def wait_for_idle(self) -> None:
        """Wait until the machine has finished all queued motion."""
        template = self.registry.resolve_command(GLOBAL, CommandKind.MOVE_TO_COMPLETE)
        await self.serializer.execute(lambda: self._run_template(template), name="wait")

    async def send_command(self, command: str, timeout: float | None = None) -> list[str]:
        """
        Send raw command text and return all reply lines.

        Args:
            command: One or more command lines.
            timeout: Timeout in ms per line, defaults to the response timeout.

        Returns:
            The reply lines of every command line, terminal markers included.
        """
        lines = split_command_lines(command)
        timeout_s = None if timeout is None else timeout / 1000

        async def run_lines() -> list[str]:
            replies: list[str] = []
            for line in lines:
                result = await self.session.exchange(line, timeout=timeout_s)
                result.raise_for_outcome()
                replies.extend(result.lines)
            return replies

        return await self.serializer.execute(run_lines, name=f"send {command!r}")

    def _variables(self, subject: Subject) -> dict[str, Any]:
        return {"Id": subject.name, "Name": subject.name}

    async def _run_template(
        self,
        template: CommandTemplate,
        pattern: ResponsePattern | None = None,
        **variables: Any,
    ) -> list[ExchangeResult]:
        """
        Fill a template and exchange each of its lines in order.

        Must only be called while owning the channel, i.e. from inside an
        operation run by the serializer.

        With a pattern, the value may come from the reply to any line. A line
        whose reply does not match is not an error as long as some line of the
        template matches.

        Raises:
            NoMatchError: If no line's reply matched the pattern.
            ProtocolError: If any line's exchange fails otherwise.
        """
        text = template.fill(**variables)
        lines = split_command_lines(text)
        if not lines:
            logger.debug(f"{template.kind.value} command for {template.subject} is empty")
            return []

        results = []
        matched = False
        last = len(lines) - 1
        for index, line in enumerate(lines):
            result = await self.session.exchange(line, pattern=pattern)
            if isinstance(result.error, NoMatchError) and (index < last or matched):
                results.append(result)
                continue

            result.raise_for_outcome()
            matched = True
            results.append(result)

        return results

    async def __aenter__(self) -> "GcodeDriver":
        """Async context manager entry."""
        await self.enable()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        try:
            await self.disable()
        finally:
            if self.connection_keep_alive:
                await self.disconnect()

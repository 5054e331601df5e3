"""End-to-end tests for GcodeDriver against the TCP simulator."""

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager

import pytest

from gcode_driver.channel import DryRunChannel, TcpChannel
from gcode_driver.core.config import CommandConfig, Config, PatternConfig
from gcode_driver.core.utils import (
    CommandError,
    InvalidPatternError,
    MissingCommandError,
    MissingPatternError,
    NoMatchError,
    ProtocolTimeoutError,
    RegistryLockedError,
    TransportError,
)
from gcode_driver.driver import GcodeDriver, create_channel
from gcode_driver.protocol.registry import CommandKind, CommandRegistry
from gcode_driver.simulator import CommandResponder, GcodeServer

INITIALIZE_COMMANDS = [
    "G21 ; Set millimeters mode",
    "G90 ; Set absolute positioning mode",
    "M82 ; Set absolute mode for extruder",
    "G28 ; Home all axes",
    "M400 ; Wait for moves to complete before returning",
]

READ_A1_PATTERN = r"read:a1:(?<Value>-?\d+)"


@asynccontextmanager
async def running_driver(
    responses: dict[str, str] | None = None,
    configure: Callable[[CommandRegistry], None] | None = None,
    default_response: str | None = None,
    enable: bool = True,
):
    """
    Start a simulator answering the initialization commands and an enabled
    driver connected to it.
    """
    responder = CommandResponder(
        responses={command: "ok" for command in INITIALIZE_COMMANDS},
        default_response=default_response,
    )
    for command, response in (responses or {}).items():
        responder.add_command_response(command, response)

    registry = CommandRegistry.with_defaults()
    if configure:
        configure(registry)

    async with GcodeServer(responder=responder) as server:
        driver = GcodeDriver(
            channel=TcpChannel("127.0.0.1", server.listener_port),
            registry=registry,
            response_timeout=500,
            connection_keep_alive=False,
        )
        try:
            if enable:
                await driver.enable()
            yield driver, server
        finally:
            await driver.disconnect()


def configure_read(command: str | None = "READ A1", pattern: str | None = READ_A1_PATTERN):
    def configure(registry: CommandRegistry) -> None:
        if command:
            registry.set_command("A1", CommandKind.ACTUATOR_READ, command)
        if pattern:
            registry.set_pattern("A1", CommandKind.ACTUATOR_READ, pattern)

    return configure


class TestLifecycle:
    """Tests for enable, initialize and disable."""

    @pytest.mark.asyncio
    async def test_enable_sends_initialize_sequence(self):
        async with running_driver() as (driver, server):
            assert driver.is_enabled
            assert driver.is_connected
            assert server.received == INITIALIZE_COMMANDS

    @pytest.mark.asyncio
    async def test_registry_locked_while_enabled(self):
        async with running_driver() as (driver, _):
            with pytest.raises(RegistryLockedError):
                driver.registry.set_command(None, CommandKind.HOME, "$H")

            await driver.disable()

            assert not driver.is_enabled
            assert not driver.is_connected
            driver.registry.set_command(None, CommandKind.HOME, "$H")

    @pytest.mark.asyncio
    async def test_disable_sends_disable_command(self):
        def configure(registry: CommandRegistry) -> None:
            registry.set_command(None, CommandKind.DISABLE, "M84 ; Motors off")

        async with running_driver({"M84 ; Motors off": "ok"}, configure) as (driver, server):
            await driver.disable()

            assert server.received[-1] == "M84 ; Motors off"

    @pytest.mark.asyncio
    async def test_failed_disable_command_still_closes_channel(self):
        """Test that disable() releases the channel when the disable command times out."""
        registry = CommandRegistry.with_defaults()
        registry.set_command(None, CommandKind.DISABLE, "M84")
        driver = GcodeDriver(
            DryRunChannel(responses={"M84": "busy"}),
            registry=registry,
            response_timeout=100,
            connection_keep_alive=False,
        )
        await driver.enable()

        with pytest.raises(ProtocolTimeoutError):
            await driver.disable()

        assert not driver.is_enabled
        assert not driver.is_connected
        assert not driver.serializer.is_running
        driver.registry.set_command(None, CommandKind.HOME, "$H")

    @pytest.mark.asyncio
    async def test_context_manager_closes_channel_when_disable_fails(self):
        registry = CommandRegistry.with_defaults()
        registry.set_command(None, CommandKind.DISABLE, "M84")
        driver = GcodeDriver(
            DryRunChannel(responses={"M84": "busy"}),
            registry=registry,
            response_timeout=100,
        )

        with pytest.raises(ProtocolTimeoutError):
            async with driver:
                assert driver.is_connected

        assert not driver.is_connected
        assert not driver.serializer.is_running

    @pytest.mark.asyncio
    async def test_enable_fails_when_home_unanswered(self):
        """Test that initialization aborts on the first failing command."""
        async with running_driver(enable=False) as (driver, server):
            server.responder.remove_command_response("G28 ; Home all axes")

            with pytest.raises(ProtocolTimeoutError):
                await driver.enable()

            assert not driver.is_enabled
            assert "M400 ; Wait for moves to complete before returning" not in server.received

    @pytest.mark.asyncio
    async def test_initialize_requires_home_command(self):
        def configure(registry: CommandRegistry) -> None:
            registry.remove_command(None, CommandKind.HOME)

        async with running_driver(configure=configure, enable=False) as (driver, server):
            with pytest.raises(MissingCommandError):
                await driver.enable()

            assert server.received == []

    @pytest.mark.asyncio
    async def test_context_manager(self):
        responder = CommandResponder(responses={c: "ok" for c in INITIALIZE_COMMANDS})
        async with GcodeServer(responder=responder) as server:
            channel = TcpChannel("127.0.0.1", server.listener_port)
            driver = GcodeDriver(channel, response_timeout=500)

            async with driver:
                assert driver.is_enabled

            assert not driver.is_connected


class TestActuatorRead:
    """Tests for reading actuator values."""

    @pytest.mark.asyncio
    async def test_read(self):
        async with running_driver({"READ A1": "read:a1:497\nok"}, configure_read()) as (driver, _):
            assert await driver.read("A1") == "497"

    @pytest.mark.asyncio
    async def test_multi_line_read_template(self):
        """Test that every line is sent and the value may come from a later line."""
        responses = {"M105": "T:20\nok", "READ A1": "read:a1:497\nok"}
        configure = configure_read(command="M105\nREAD A1")

        async with running_driver(responses, configure) as (driver, server):
            assert await driver.read("A1") == "497"
            assert server.received[-2:] == ["M105", "READ A1"]

    @pytest.mark.asyncio
    async def test_multi_line_read_value_from_first_line(self):
        responses = {"READ A1": "read:a1:-12\nok", "G4 P0": "ok"}
        configure = configure_read(command="READ A1\nG4 P0")

        async with running_driver(responses, configure) as (driver, server):
            assert await driver.read("A1") == "-12"
            assert server.received[-2:] == ["READ A1", "G4 P0"]

    @pytest.mark.asyncio
    async def test_multi_line_read_without_any_match(self):
        responses = {"M105": "T:20\nok", "READ A1": "read:b2:1\nok"}
        configure = configure_read(command="M105\nREAD A1")

        async with running_driver(responses, configure) as (driver, server):
            with pytest.raises(NoMatchError):
                await driver.read("A1")

            assert server.received[-2:] == ["M105", "READ A1"]

    @pytest.mark.asyncio
    async def test_read_without_pattern(self):
        """Test that a read with no pattern fails before anything is sent."""
        async with running_driver(
            {"READ A1": "read:a1:497\nok"}, configure_read(pattern=None)
        ) as (driver, server):
            with pytest.raises(MissingPatternError):
                await driver.read("A1")

            assert "READ A1" not in server.received

    @pytest.mark.asyncio
    async def test_read_without_command(self):
        async with running_driver(
            {"READ A1": "read:a1:497\nok"}, configure_read(command=None)
        ) as (driver, server):
            with pytest.raises(MissingCommandError):
                await driver.read("A1")

            assert "READ A1" not in server.received

    @pytest.mark.asyncio
    async def test_read_with_wrong_pattern(self):
        async with running_driver(
            {"READ A1": "read:a1:497\nok"},
            configure_read(pattern=r"reXXad:a1:(?<Value>-?\d+)"),
        ) as (driver, _):
            with pytest.raises(NoMatchError):
                await driver.read("A1")

    def test_invalid_pattern_rejected_at_configuration(self):
        with pytest.raises(InvalidPatternError):
            configure_read(pattern=r"read:a1:(?<Value>-?\d+")(CommandRegistry())

    @pytest.mark.asyncio
    async def test_global_read_command_with_id(self):
        def configure(registry: CommandRegistry) -> None:
            registry.set_command(None, CommandKind.ACTUATOR_READ, "READ {Id}")
            registry.set_pattern(None, CommandKind.ACTUATOR_READ, r"^val:(?<Value>.+)$")

        responses = {"READ A1": "val:1\nok", "READ A2": "val:2\nok"}
        async with running_driver(responses, configure) as (driver, _):
            assert await driver.read("A1") == "1"
            assert await driver.read("A2") == "2"

    @pytest.mark.asyncio
    async def test_read_pattern_without_value_returns_line(self):
        async with running_driver(
            {"READ A1": "endstop:triggered\nok"}, configure_read(pattern="^endstop:")
        ) as (driver, _):
            assert await driver.read("A1") == "endstop:triggered"

    @pytest.mark.asyncio
    async def test_repeated_reads(self):
        async with running_driver({"READ A1": "read:a1:497\nok"}, configure_read()) as (driver, _):
            values = [await driver.read("A1") for _ in range(3)]

        assert values == ["497", "497", "497"]

    @pytest.mark.asyncio
    async def test_concurrent_reads_do_not_interleave(self):
        """Test that concurrent callers each get the reply to their own command."""

        def configure(registry: CommandRegistry) -> None:
            registry.set_command(None, CommandKind.ACTUATOR_READ, "READ {Id}")
            registry.set_pattern(None, CommandKind.ACTUATOR_READ, r"^read:(\w+):(?<Value>-?\d+)$")

        subjects = [f"A{i}" for i in range(8)]
        responses = {f"READ {s}": f"read:{s}:{i * 10}\nok" for i, s in enumerate(subjects)}

        async with running_driver(responses, configure) as (driver, _):
            values = await asyncio.gather(*(driver.read(s) for s in subjects))

        assert values == [str(i * 10) for i in range(len(subjects))]


class TestTimeouts:
    """Tests for recovery after a device stops answering."""

    @pytest.mark.asyncio
    async def test_next_operation_works_after_timeout(self):
        def configure(registry: CommandRegistry) -> None:
            configure_read()(registry)
            registry.set_command("A2", CommandKind.ACTUATOR_READ, "READ A2")
            registry.set_pattern("A2", CommandKind.ACTUATOR_READ, r"read:a2:(?<Value>-?\d+)")

        async with running_driver({"READ A1": "read:a1:497\nok"}, configure) as (driver, _):
            with pytest.raises(ProtocolTimeoutError):
                await driver.read("A2")

            assert await driver.read("A1") == "497"

    @pytest.mark.asyncio
    async def test_missing_terminal_keeps_matched_value(self):
        async with running_driver({"READ A1": "read:a1:497"}, configure_read()) as (driver, _):
            assert await driver.read("A1") == "497"


class TestCommands:
    """Tests for actuate, move and raw commands."""

    @pytest.mark.asyncio
    async def test_actuate_boolean(self):
        def configure(registry: CommandRegistry) -> None:
            registry.set_command("coolant", CommandKind.ACTUATE_BOOLEAN, "{True:M8}{False:M9}")

        async with running_driver({"M8": "ok", "M9": "ok"}, configure) as (driver, server):
            await driver.actuate("coolant", True)
            await driver.actuate("coolant", False)

            assert server.received[-2:] == ["M8", "M9"]

    @pytest.mark.asyncio
    async def test_actuate_double(self):
        def configure(registry: CommandRegistry) -> None:
            registry.set_command("spindle", CommandKind.ACTUATE_DOUBLE, "M3 S{Value:%.0f}")

        async with running_driver({"M3 S1200": "ok"}, configure) as (driver, server):
            await driver.write("spindle", 1200.0)

            assert server.received[-1] == "M3 S1200"

    @pytest.mark.asyncio
    async def test_actuate_without_command(self):
        async with running_driver() as (driver, _):
            with pytest.raises(MissingCommandError):
                await driver.actuate("spindle", 1.0)

    @pytest.mark.asyncio
    async def test_move_to(self):
        async with running_driver(default_response="ok") as (driver, server):
            await driver.move_to(X=10, Y=20.5, feed_rate=3000)

            sent = server.received[-1]
            assert sent.split(";")[0].split() == ["G0", "X10.0000", "Y20.5000", "F3000"]

    @pytest.mark.asyncio
    async def test_move_to_and_wait(self):
        async with running_driver(default_response="ok") as (driver, server):
            await driver.move_to(Z=-1.25, wait=True)

            assert server.received[-2].split()[:2] == ["G0", "Z-1.2500"]
            assert server.received[-1] == INITIALIZE_COMMANDS[-1]

    @pytest.mark.asyncio
    async def test_move_to_unknown_axis(self):
        async with running_driver() as (driver, _):
            with pytest.raises(ValueError, match="W"):
                await driver.move_to(W=1)

    @pytest.mark.asyncio
    async def test_home_and_wait(self):
        async with running_driver() as (driver, server):
            await driver.home()
            await driver.wait_for_idle()

            assert server.received[-2:] == INITIALIZE_COMMANDS[-2:]

    @pytest.mark.asyncio
    async def test_send_command(self):
        async with running_driver({"M114": "X:0.00 Y:0.00\nok"}) as (driver, _):
            assert await driver.send_command("M114") == ["X:0.00 Y:0.00", "ok"]

    @pytest.mark.asyncio
    async def test_send_multi_line_command(self):
        async with running_driver({"M114": "X:1\nok", "M105": "T:20\nok"}) as (driver, _):
            lines = await driver.send_command("M114\nM105")

        assert lines == ["X:1", "ok", "T:20", "ok"]

    @pytest.mark.asyncio
    async def test_error_reply(self):
        def configure(registry: CommandRegistry) -> None:
            registry.set_error_pattern("^error:")

        async with running_driver({"G1 X9999": "error:15"}, configure) as (driver, _):
            with pytest.raises(CommandError):
                await driver.send_command("G1 X9999")

            # The channel is usable afterwards
            assert await driver.send_command(INITIALIZE_COMMANDS[-1]) == ["ok"]


class TestTransport:
    @pytest.mark.asyncio
    async def test_operation_without_connection(self):
        registry = CommandRegistry()
        configure_read()(registry)
        driver = GcodeDriver(TcpChannel("127.0.0.1", 1), registry=registry)

        with pytest.raises(TransportError):
            await driver.read("A1")

        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        server = GcodeServer()
        await server.start()
        port = server.listener_port
        await server.stop()

        driver = GcodeDriver(TcpChannel("127.0.0.1", port, connect_timeout=1000))

        with pytest.raises(TransportError):
            await driver.enable()


class TestCreateChannel:
    """Tests for building channels from configuration."""

    def test_serial_channel_requires_path(self):
        config = Config()
        config.channel.type = "serial"

        with pytest.raises(ValueError, match="device path"):
            create_channel(config)

    def test_dry_run_channel(self):
        config = Config()
        config.channel.type = "dry-run"

        assert isinstance(create_channel(config), DryRunChannel)


class TestFromConfig:
    """Tests for building a driver from configuration."""

    @pytest.mark.asyncio
    async def test_dry_run_driver(self):
        config = Config()
        config.channel.type = "dry-run"
        config.simulator.responses = {"READ A1": "read:a1:7\nok"}
        config.commands = [CommandConfig(kind="actuator-read", template="READ A1", subject="A1")]
        config.patterns = [
            PatternConfig(kind="actuator-read", pattern=READ_A1_PATTERN, subject="A1")
        ]

        driver = GcodeDriver.from_config(config)

        async with driver:
            assert await driver.read("A1") == "7"

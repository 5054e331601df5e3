"""
Command-line interface for the GCode driver.

This module provides the CLI using Click, supporting configuration via:
1. Environment variables (highest precedence)
2. CLI arguments
3. Config file
4. Default values (lowest precedence)
"""

import asyncio
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click

from gcode_driver.core.config import (
    CHANNEL_TYPES,
    DEFAULT_CONFIG_PATH,
    ENV_CHANNEL_ADDRESS,
    ENV_CHANNEL_BAUD_RATE,
    ENV_CHANNEL_PATH,
    ENV_CHANNEL_PORT,
    ENV_CHANNEL_RESPONSE_TIMEOUT,
    ENV_CHANNEL_TYPE,
    ENV_CONFIG_FILE,
    Config,
)
from gcode_driver.core.logging import get_logger, setup_logging
from gcode_driver.core.utils import GcodeDriverError
from gcode_driver.driver import GcodeDriver
from gcode_driver.simulator import CommandResponder, GcodeServer

logger = get_logger()


def parse_value(value: str) -> bool | float:
    """Parse an actuator value given on the command line."""
    lowered = value.strip().lower()
    if lowered in ("true", "on", "yes"):
        return True
    if lowered in ("false", "off", "no"):
        return False
    try:
        return float(value)
    except ValueError as e:
        raise click.BadParameter(f"'{value}' is neither a boolean nor a number") from e


def run_with_driver(config: Config, operation: Callable[[GcodeDriver], Awaitable[Any]]) -> Any:
    """
    Connect a driver, run one operation and disconnect again.

    Exits with status 1 when the operation fails.
    """

    async def run() -> Any:
        driver = GcodeDriver.from_config(config)
        try:
            await driver.connect()
            return await operation(driver)
        finally:
            await driver.disconnect()

    try:
        return asyncio.run(run())
    except GcodeDriverError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)


@click.group()
@click.option(
    "-c", "--config",
    "config_file",
    type=click.Path(exists=False, path_type=Path),
    envvar=ENV_CONFIG_FILE,
    default=None,
    help=f"Path to configuration file. [default: {DEFAULT_CONFIG_PATH}] [env: {ENV_CONFIG_FILE}]",
)
@click.option(
    "-t", "--type",
    "channel_type",
    type=click.Choice(CHANNEL_TYPES),
    default=None,
    help=f"Channel type. [env: {ENV_CHANNEL_TYPE}]",
)
@click.option(
    "-a", "--address",
    type=str,
    default=None,
    help=f"Controller address for TCP channels. [env: {ENV_CHANNEL_ADDRESS}]",
)
@click.option(
    "-p", "--port",
    type=int,
    default=None,
    help=f"Controller port for TCP channels. [env: {ENV_CHANNEL_PORT}]",
)
@click.option(
    "--dev",
    "dev_path",
    type=str,
    default=None,
    help=f"Serial device path like /dev/ttyACM0. [env: {ENV_CHANNEL_PATH}]",
)
@click.option(
    "-b", "--baud-rate",
    type=int,
    default=None,
    help=f"Serial baud rate. [env: {ENV_CHANNEL_BAUD_RATE}]",
)
@click.option(
    "--timeout",
    "response_timeout",
    type=float,
    default=None,
    help=f"Response timeout in ms. [env: {ENV_CHANNEL_RESPONSE_TIMEOUT}]",
)
@click.option(
    "--gcode-log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Log every command and reply line to this file.",
)
@click.option(
    "-v", "--verbose",
    count=True,
    help="Increase verbosity (-v debug, -vv raw traffic).",
)
@click.option(
    "-q", "--quiet",
    is_flag=True,
    default=False,
    help="Suppress all output except errors.",
)
@click.version_option(package_name="gcode-driver")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: Path | None,
    channel_type: str | None,
    address: str | None,
    port: int | None,
    dev_path: str | None,
    baud_rate: int | None,
    response_timeout: float | None,
    gcode_log_file: str | None,
    verbose: int,
    quiet: bool,
) -> None:
    """
    GCode Driver - Drive motion-control hardware with configurable commands.

    Commands and reply patterns are taken from the configuration file; the
    connection settings may be overridden on the command line.

    Example usage:

    \b
        # Home the machine on a serial controller
        gcode-driver --type serial --dev /dev/ttyACM0 home

        # Read an actuator configured in the config file
        gcode-driver read A1

        # Run a simulator answering from the config file's responses
        gcode-driver simulate
    """
    cli_args: dict[str, Any] = {
        "channel_type": channel_type,
        "address": address,
        "port": port,
        "dev_path": dev_path,
        "baud_rate": baud_rate,
        "response_timeout": response_timeout,
        "gcode_log_file": gcode_log_file,
    }

    skip_validation = ctx.invoked_subcommand in ("simulate", "generate-config")

    try:
        config = Config.load(
            config_file=config_file,
            cli_args=cli_args,
            skip_channel_validation=skip_validation,
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    setup_logging(verbosity_level=verbose, quiet=quiet, gcode_log_file=config.gcode_log_file)

    ctx.obj = {"config": config, "config_file": config_file}


@main.command()
@click.pass_obj
def home(obj: dict[str, Any]) -> None:
    """Initialize and home the machine."""
    run_with_driver(obj["config"], lambda driver: driver.initialize())
    click.echo("ok")


@main.command()
@click.argument("subject")
@click.pass_obj
def read(obj: dict[str, Any], subject: str) -> None:
    """Read the value of actuator SUBJECT."""
    value = run_with_driver(obj["config"], lambda driver: driver.read(subject))
    click.echo(value)


@main.command()
@click.argument("subject")
@click.argument("value")
@click.pass_obj
def actuate(obj: dict[str, Any], subject: str, value: str) -> None:
    """Set actuator SUBJECT to VALUE (on/off/true/false or a number)."""
    parsed = parse_value(value)
    run_with_driver(obj["config"], lambda driver: driver.actuate(subject, parsed))
    click.echo("ok")


@main.command()
@click.argument("command", nargs=-1, required=True)
@click.pass_obj
def send(obj: dict[str, Any], command: tuple[str, ...]) -> None:
    """Send a raw COMMAND line and print the replies."""
    replies = run_with_driver(obj["config"], lambda driver: driver.send_command(" ".join(command)))
    for line in replies:
        click.echo(line)


@main.command()
@click.option("--address", "sim_address", type=str, default=None, help="Bind address.")
@click.option("--port", "sim_port", type=int, default=None, help="Listen port.")
@click.pass_obj
def simulate(obj: dict[str, Any], sim_address: str | None, sim_port: int | None) -> None:
    """Run a TCP controller simulator answering from the configured responses."""
    settings = obj["config"].simulator
    server = GcodeServer(
        responder=CommandResponder(
            responses=settings.responses,
            default_response=settings.default_response,
        ),
        address=sim_address or settings.address,
        port=settings.port if sim_port is None else sim_port,
    )

    try:
        asyncio.run(run_server(server))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")

    logger.info("GCode simulator stopped")


@main.command("generate-config")
@click.pass_obj
def generate_config(obj: dict[str, Any]) -> None:
    """Write the effective configuration to the config file and exit."""
    target_path = obj["config_file"] or DEFAULT_CONFIG_PATH
    try:
        obj["config"].save(target_path)
    except OSError as e:
        click.echo(f"Error generating config file: {e}", err=True)
        sys.exit(1)
    click.echo(f"Configuration file generated: {target_path}")


async def run_server(server: GcodeServer) -> None:
    """
    Run the simulator until a shutdown signal arrives.

    Args:
        server: The GcodeServer instance to run.
    """
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

    try:
        await server.start()
        await stop_event.wait()
    finally:
        await server.stop()


if __name__ == "__main__":
    main()

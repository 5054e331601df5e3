"""
Dry-Run Channel - Channel implementation for testing without hardware.

This module provides the DryRunChannel class which answers every written
line from a CommandResponder instead of a device. By default every command
is answered with 'ok'.
"""

from gcode_driver.channel.channel import ByteStreamChannel
from gcode_driver.core.logging import get_logger, log_gcode_recv, log_gcode_sent
from gcode_driver.core.utils import TERMINAL_MARKER, TransportError
from gcode_driver.simulator import CommandResponder

logger = get_logger()


class DryRunChannel(ByteStreamChannel):
    """
    Channel that simulates a device in-process.

    Commands are logged and looked up in the responder; the reply lines are
    queued as if the device had sent them. Unknown commands get the
    responder's default response, which is 'ok' unless configured otherwise.
    """

    def __init__(
        self,
        responder: CommandResponder | None = None,
        responses: dict[str, str] | None = None,
    ):
        """
        Initialize the dry-run channel.

        Args:
            responder: The response table to answer from.
            responses: Convenience mapping used to build a responder when none
                is given; unknown commands are then answered with 'ok'.
        """
        super().__init__(connect_timeout=0)
        self.responder = responder or CommandResponder(
            responses=responses, default_response=TERMINAL_MARKER
        )

    @property
    def description(self) -> str:
        return "dry-run channel (no actual hardware)"

    async def _open(self) -> None:
        return None

    async def connect(self) -> None:
        if self.is_connected:
            logger.warning("Already connected to dry-run channel")
            return

        self._disconnect_event.clear()
        self._connected = True
        logger.info(f"Connected to {self.description}")

    async def write_line(self, text: str) -> None:
        """Answer a command line from the responder."""
        if not self.is_connected:
            raise TransportError(f"{self.description} is not connected")

        command = text.strip()
        log_gcode_sent(command)
        logger.debug(f"[DRY-RUN] Would send: {command}")

        for line in self.responder.respond(command):
            log_gcode_recv(line)
            self._line_queue.put_nowait(line)

    def inject_line(self, line: str) -> None:
        """Queue an unsolicited line, as if the device had sent it."""
        self._line_queue.put_nowait(line)

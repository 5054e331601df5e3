"""
Command/response simulator for the GCode driver.

This module provides:
- CommandResponder: a table mapping command lines to canned reply text
- GcodeServer: an async TCP server that answers clients from a CommandResponder

The server stands in for a controller on the network, so the driver can be
exercised end to end without hardware.
"""

import asyncio
import socket

from gcode_driver.core.logging import get_logger

logger = get_logger()


class CommandResponder:
    """
    Maps received command lines to reply lines.

    Commands are matched verbatim after stripping surrounding whitespace.
    A reply is given as text; multiple reply lines are separated by newlines,
    e.g. ``"read:a1:497\\nok"``.
    """

    def __init__(
        self,
        responses: dict[str, str] | None = None,
        default_response: str | None = None,
    ):
        """
        Initialize the responder.

        Args:
            responses: Initial command -> reply text mapping.
            default_response: Reply for commands with no entry. None means
                unknown commands get no reply at all.
        """
        self.default_response = default_response
        self._responses: dict[str, str] = {}
        self.received: list[str] = []

        for command, response in (responses or {}).items():
            self.add_command_response(command, response)

    def add_command_response(self, command: str, response: str) -> None:
        self._responses[command.strip()] = response

    def remove_command_response(self, command: str) -> None:
        self._responses.pop(command.strip(), None)

    def respond(self, command: str) -> list[str]:
        """
        Record a command and return the lines to reply with.

        Returns:
            The reply lines, or an empty list when the command is unknown and
            there is no default response.
        """
        command = command.strip()
        self.received.append(command)

        response = self._responses.get(command, self.default_response)
        if response is None:
            logger.warning(f"No response configured for command: {command!r}")
            return []

        return [line for line in response.split("\n") if line.strip()]


class GcodeServer:
    """
    Async TCP server simulating a line-protocol controller.

    Each line received from a client is looked up in the responder and the
    configured reply lines are written back in order.
    """

    def __init__(
        self,
        responder: CommandResponder | None = None,
        address: str = "127.0.0.1",
        port: int = 0,
    ):
        """
        Initialize the simulator server.

        Args:
            responder: The response table. A new empty one is created if None.
            address: The address to bind the server to.
            port: The port to listen on; 0 picks a free port.
        """
        self.responder = responder or CommandResponder()
        self.address = address
        self.port = port

        self._server: asyncio.Server | None = None
        self._active_connections: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._server is not None

    @property
    def listener_port(self) -> int:
        """The port actually bound, useful when started with port 0."""
        if not self._server or not self._server.sockets:
            return self.port
        return self._server.sockets[0].getsockname()[1]

    def add_command_response(self, command: str, response: str) -> None:
        self.responder.add_command_response(command, response)

    @property
    def received(self) -> list[str]:
        return self.responder.received

    async def start(self) -> None:
        """
        Start the TCP server.

        The server will begin accepting connections after this method returns.
        """
        if self._server:
            logger.warning("Simulator is already running")
            return

        self._server = await asyncio.start_server(
            self._handle_client,
            self.address,
            self.port,
        )

        for sock in self._server.sockets:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        addrs = ", ".join(str(sock.getsockname()) for sock in self._server.sockets)
        logger.info(f"GCode simulator started on {addrs}")

    async def serve_forever(self) -> None:
        """Run the server until it is stopped."""
        if not self._server:
            await self.start()

        if self._server:
            async with self._server:
                await self._server.serve_forever()

    async def stop(self) -> None:
        """Stop the server and close all client connections."""
        for task in self._active_connections:
            task.cancel()

        if self._active_connections:
            await asyncio.gather(*self._active_connections, return_exceptions=True)

        self._active_connections.clear()

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("GCode simulator stopped")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """
        Handle an individual client connection.

        Args:
            reader: The stream reader for the client connection.
            writer: The stream writer for the client connection.
        """
        client_address = writer.get_extra_info("peername") or ("unknown", 0)
        logger.info(f"Client connected: {client_address}")

        task = asyncio.current_task()
        if task:
            self._active_connections.add(task)

        try:
            while True:
                data = await reader.readline()
                if not data:
                    break

                command = data.decode("ascii", errors="replace").strip()
                if not command:
                    continue

                logger.debug(f"Simulator received: {command!r}")
                for line in self.responder.respond(command):
                    writer.write((line + "\n").encode("ascii"))
                await writer.drain()

        except asyncio.CancelledError:
            logger.debug(f"Client connection cancelled: {client_address}")
        except ConnectionError as e:
            logger.warning(f"Error handling client {client_address}: {e}")
        finally:
            if task:
                self._active_connections.discard(task)

            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

            logger.info(f"Client disconnected: {client_address}")

    async def __aenter__(self) -> "GcodeServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

"""
TCP control server.

Operators connect with any line-based client (telnet, netcat) or a
script, send one request per line and get exactly one response per
request. ``quit`` ends the session; ``shutdown`` closes the listener, lets
requests already being handled send their response, then closes every
open session.
"""

import asyncio
import logging

from jobhive.constants import DEFAULT_CONTROL_PORT
from jobhive.control.commands import CommandContext, dispatch
from jobhive.control.protocol import parse_request, render
from jobhive.exceptions import ProtocolParseError, SocketBindFailure

logger = logging.getLogger(__name__)

# Longest request line accepted
MAX_LINE_BYTES = 64 * 1024


class ControlServer:
    """
    Line-oriented command server for one host.

    Commands resolve workers through the host it was given, so a control
    server only acts on the workers of its own machine.
    """

    def __init__(
        self,
        context: CommandContext,
        host: str = "0.0.0.0",
        port: int = DEFAULT_CONTROL_PORT,
        retry_bind: bool = False,
        retry_interval: float = 10.0,
    ):
        """
        Initialize the control server.

        Args:
            context: Queue and host the commands operate on.
            host: Interface to listen on.
            port: TCP port to listen on; 0 picks a free port.
            retry_bind: Keep retrying when the address is in use instead
                of failing.
            retry_interval: Seconds between bind attempts.
        """
        self.context = context
        self.bind_host = host
        self.bind_port = port
        self.retry_bind = retry_bind
        self.retry_interval = retry_interval

        self._server: asyncio.Server | None = None
        # Each session's event is set while it has no request in flight
        self._sessions: dict[asyncio.StreamWriter, asyncio.Event] = {}
        self._closing = False
        self._closed = asyncio.Event()
        self._shutdown_task: asyncio.Task | None = None

    @property
    def port(self) -> int:
        """Port actually bound, useful when started on port 0."""
        if self._server is None or not self._server.sockets:
            return self.bind_port
        return self._server.sockets[0].getsockname()[1]

    @property
    def address(self) -> str:
        return f"{self.bind_host}:{self.port}"

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> None:
        """
        Bind and start accepting sessions.

        Raises:
            SocketBindFailure: If the address cannot be bound and retry
                mode is off.
        """
        while True:
            try:
                self._server = await asyncio.start_server(
                    self._handle_session,
                    self.bind_host,
                    self.bind_port,
                    limit=MAX_LINE_BYTES,
                )
                break
            except OSError as e:
                if not self.retry_bind:
                    raise SocketBindFailure(
                        f"Unable to bind {self.bind_host}:{self.bind_port}: {e}"
                    ) from e
                logger.error(
                    "Control server bind failed, retrying",
                    extra={"address": f"{self.bind_host}:{self.bind_port}", "error": str(e)},
                )
                await asyncio.sleep(self.retry_interval)

        self.context.address = self.address
        logger.info("Control server listening", extra={"address": self.address})

    async def wait_closed(self) -> None:
        """Block until the server has been shut down."""
        await self._closed.wait()

    async def serve_forever(self) -> None:
        await self.start()
        await self.wait_closed()

    async def shutdown(self) -> None:
        """Stop listening, flush in-flight responses and end every session."""
        if self._closing:
            await self._closed.wait()
            return
        self._closing = True
        logger.info("Control server shutting down", extra={"address": self.address})

        if self._server is not None:
            self._server.close()

        for writer, idle in list(self._sessions.items()):
            await idle.wait()
            await self._close_writer(writer)

        if self._server is not None:
            await self._server.wait_closed()
        self._closed.set()

    async def _handle_session(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        idle = asyncio.Event()
        idle.set()
        self._sessions[writer] = idle
        logger.info("Control session opened", extra={"peer": str(peer)})

        try:
            while not self._closing:
                try:
                    line = await reader.readline()
                except (asyncio.LimitOverrunError, ValueError):
                    await self._send(writer, "Command error: request line too long")
                    break

                if not line:
                    break

                text = line.decode("utf-8", errors="replace").strip()
                if not text or self._closing:
                    continue

                idle.clear()
                try:
                    try:
                        request = parse_request(text)
                    except ProtocolParseError as e:
                        await self._send(writer, f"Command error: {e}")
                        continue

                    result = await dispatch(self.context, request)

                    if result.shutdown:
                        self._shutdown_task = asyncio.create_task(self.shutdown())
                        break
                    if result.close:
                        break

                    await self._send(writer, render(result, request.json_output))
                finally:
                    idle.set()
        except ConnectionError as e:
            logger.warning("Control session dropped", extra={"peer": str(peer), "error": str(e)})
        finally:
            self._sessions.pop(writer, None)
            await self._close_writer(writer)
            logger.info("Control session closed", extra={"peer": str(peer)})

    @staticmethod
    async def _send(writer: asyncio.StreamWriter, text: str) -> None:
        writer.write(text.encode("utf-8") + b"\n")
        await writer.drain()

    @staticmethod
    async def _close_writer(writer: asyncio.StreamWriter) -> None:
        if writer.is_closing():
            return
        writer.close()
        try:
            await writer.wait_closed()
        except ConnectionError:
            pass

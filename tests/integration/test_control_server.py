"""
Integration tests for the TCP control server.
"""

import asyncio
import json
import os
import signal
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from jobhive.control.commands import CommandContext
from jobhive.control.server import ControlServer
from jobhive.exceptions import SocketBindFailure
from jobhive.jobs.queue import Queue
from jobhive.observability.metrics import MetricsCollector
from jobhive.types.worker import WorkerPacket
from jobhive.worker.host import Host
from tests.fakes import TEST_HOSTNAME


@pytest.fixture
def sent_signals() -> list[tuple[int, int]]:
    return []


@pytest_asyncio.fixture
async def server(
    queue: Queue, host: Host, metrics: MetricsCollector, sent_signals: list
) -> AsyncGenerator[ControlServer]:
    context = CommandContext(
        queue=queue,
        host=host,
        send_signal=lambda pid, sig: sent_signals.append((pid, sig)),
        metrics=metrics,
    )
    server = ControlServer(context, host="127.0.0.1", port=0)
    await server.start()
    yield server
    await server.shutdown()


async def connect(server: ControlServer) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    return await asyncio.open_connection("127.0.0.1", server.port)


async def request(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, line: str) -> str:
    writer.write(line.encode() + b"\n")
    await writer.drain()
    response = await asyncio.wait_for(reader.readline(), timeout=5)
    return response.decode().rstrip("\n")


class TestControlServer:
    """Tests for sessions over a real socket."""

    async def test_shell_greeting(self, server: ControlServer):
        reader, writer = await connect(server)

        response = await request(reader, writer, "shell")

        assert response.startswith("Connected to jobhive on 127.0.0.1:")
        writer.close()

    async def test_one_json_response_per_request(self, server: ControlServer, host: Host, sent_signals: list):
        packet = WorkerPacket(id=f"{TEST_HOSTNAME}:{os.getpid()}", hostname=TEST_HOSTNAME, pid=os.getpid())
        await host.register_worker(packet)
        reader, writer = await connect(server)

        workers = json.loads(await request(reader, writer, "workers --json"))
        paused = json.loads(await request(reader, writer, '{"cmd": "worker:pause", "json": true}'))
        unknown = json.loads(await request(reader, writer, '{"cmd": "fly", "json": true}'))

        assert workers["ok"] == 1
        assert workers["data"][0]["id"] == packet.id
        assert paused == {
            "ok": 1,
            "message": f"Paused worker {packet.id}",
            "data": [{"ok": 1, "message": f"Paused worker {packet.id}"}],
        }
        assert sent_signals == [(os.getpid(), signal.SIGUSR2)]
        assert unknown["ok"] == 0
        writer.close()

    async def test_parse_errors_keep_session_open(self, server: ControlServer):
        reader, writer = await connect(server)

        error = await request(reader, writer, "workers --bogus")
        greeting = await request(reader, writer, "shell")

        assert error == 'Command error: The "--bogus" option does not exist.'
        assert greeting.startswith("Connected to jobhive")
        writer.close()

    async def test_quit_closes_only_that_session(self, server: ControlServer):
        reader, writer = await connect(server)
        other_reader, other_writer = await connect(server)

        writer.write(b"quit\n")
        await writer.drain()

        assert await asyncio.wait_for(reader.read(), timeout=5) == b""
        assert server.is_serving
        assert (await request(other_reader, other_writer, "shell")).startswith("Connected")
        other_writer.close()

    async def test_shutdown_closes_listener_and_sessions(self, server: ControlServer):
        port = server.port
        reader, writer = await connect(server)
        other_reader, other_writer = await connect(server)
        assert (await request(other_reader, other_writer, "shell")).startswith("Connected")

        writer.write(b"shutdown\n")
        await writer.drain()

        await asyncio.wait_for(server.wait_closed(), timeout=5)
        assert await asyncio.wait_for(other_reader.read(), timeout=5) == b""
        assert not server.is_serving
        with pytest.raises(OSError):
            await asyncio.open_connection("127.0.0.1", port)

    async def test_shutdown_flushes_in_flight_responses(self, server: ControlServer, host: Host, monkeypatch):
        original_cleanup = host.cleanup

        async def slow_cleanup():
            await asyncio.sleep(0.5)
            return await original_cleanup()

        monkeypatch.setattr(host, "cleanup", slow_cleanup)
        reader, writer = await connect(server)
        _, other_writer = await connect(server)

        writer.write(b"cleanup\n")
        await writer.drain()
        await asyncio.sleep(0.1)
        other_writer.write(b"shutdown\n")
        await other_writer.drain()

        response = await asyncio.wait_for(reader.readline(), timeout=5)
        assert response.decode().startswith("Cleaned hosts:")
        assert await asyncio.wait_for(reader.read(), timeout=5) == b""
        await asyncio.wait_for(server.wait_closed(), timeout=5)
        assert not server.is_serving

    async def test_bind_failure(self, server: ControlServer, queue: Queue, host: Host, metrics: MetricsCollector):
        clash = ControlServer(
            CommandContext(queue=queue, host=host, metrics=metrics),
            host="127.0.0.1",
            port=server.port,
        )

        with pytest.raises(SocketBindFailure):
            await clash.start()

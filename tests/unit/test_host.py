"""
Unit tests for host bookkeeping and worker liveness.
"""

import os
import time

import pytest

from jobhive.constants import KEY_HOSTS, WorkerStatus
from jobhive.store.adapter import RedisStore
from jobhive.types.worker import WorkerPacket, parse_worker_id
from jobhive.worker.host import Host, process_alive
from tests.fakes import DEAD_PID, TEST_HOSTNAME


def make_packet(hostname: str = TEST_HOSTNAME, pid: int | None = None, **fields) -> WorkerPacket:
    pid = os.getpid() if pid is None else pid
    return WorkerPacket(id=f"{hostname}:{pid}", hostname=hostname, pid=pid, queues=["default"], **fields)


class TestWorkerIds:
    """Tests for worker id parsing."""

    def test_parse_worker_id(self):
        assert parse_worker_id("web-1.example.com:4242") == ("web-1.example.com", 4242)

    @pytest.mark.parametrize("bad", ["nohost", ":12", "host:", "host:abc"])
    def test_parse_worker_id_rejects_malformed(self, bad: str):
        with pytest.raises(ValueError):
            parse_worker_id(bad)

    def test_process_alive(self):
        assert process_alive(os.getpid()) is True
        assert process_alive(DEAD_PID) is False
        assert process_alive(0) is False


class TestRegistration:
    """Tests for register/deregister and lookup."""

    async def test_register_and_list(self, host: Host):
        packet = make_packet()

        await host.register_worker(packet)

        workers = await host.workers()
        assert [w.id for w in workers] == [packet.id]
        assert workers[0].queues == ["default"]
        assert await host.hostnames() == [TEST_HOSTNAME]

    async def test_deregister_keeps_terminated_record(self, host: Host):
        packet = make_packet()
        await host.register_worker(packet)

        await host.deregister_worker(packet)

        assert await host.workers() == []
        record = await host.get_packet(packet.id)
        assert record is not None
        assert record.status == WorkerStatus.TERMINATED

    async def test_lookup_exact_wildcard_and_list(self, host: Host):
        first = make_packet(pid=os.getpid())
        second = make_packet(pid=os.getppid())
        await host.register_worker(first)
        await host.register_worker(second)

        assert [p.id for p in await host.lookup(first.id)] == [first.id]
        assert {p.id for p in await host.lookup(f"{TEST_HOSTNAME}:*")} == {first.id, second.id}
        assert {p.id for p in await host.lookup(f"{first.id},{second.id}")} == {first.id, second.id}
        assert await host.lookup("other-host:*") == []


class TestLiveness:
    """Tests for is_worker_alive."""

    async def test_local_worker_uses_process_check(self, host: Host):
        assert await host.is_worker_alive(f"{TEST_HOSTNAME}:{os.getpid()}") is True
        assert await host.is_worker_alive(f"{TEST_HOSTNAME}:{DEAD_PID}") is False

    async def test_remote_worker_uses_heartbeat_age(self, host: Host):
        fresh = make_packet(hostname="remote", pid=10)
        stale = make_packet(hostname="remote", pid=11, heartbeat=time.time() - 3600)
        await host.save_packet(fresh)
        await host.save_packet(stale)

        assert await host.is_worker_alive(fresh.id) is True
        assert await host.is_worker_alive(stale.id) is False
        assert await host.is_worker_alive("remote:12") is False

    async def test_malformed_id_is_dead(self, host: Host):
        assert await host.is_worker_alive("garbage") is False


class TestCleanup:
    """Tests for host cleanup."""

    async def test_dead_workers_are_removed(self, host: Host):
        alive = make_packet()
        dead = make_packet(pid=DEAD_PID)
        await host.register_worker(alive)
        await host.register_worker(dead)

        result = await host.cleanup()

        assert result["workers"] == [dead.id]
        assert [w.id for w in await host.workers()] == [alive.id]
        assert await host.get_packet(dead.id) is None

    async def test_empty_idle_host_is_removed(self, host: Host, store: RedisStore):
        await store.sorted_add(KEY_HOSTS, {"old-host": time.time() - 3600, "new-host": time.time()})

        result = await host.cleanup()

        assert result["hosts"] == ["old-host"]
        assert await host.hostnames() == ["new-host"]

    async def test_cleanup_twice_removes_nothing_more(self, host: Host):
        await host.register_worker(make_packet(pid=DEAD_PID))

        await host.cleanup()
        again = await host.cleanup()

        assert again == {"hosts": [], "workers": []}

"""
Host bookkeeping for workers.

A host is the set of workers registered as running on one machine. The
host keeps worker status records, answers liveness questions for the
queue's zombie cleanup, and removes workers whose process has gone.
"""

import fnmatch
import logging
import os
import socket
import time

from jobhive.constants import (
    DEFAULT_EXPIRY_TIME,
    KEY_HOST,
    KEY_HOSTS,
    KEY_WORKER,
    WorkerStatus,
)
from jobhive.store.adapter import RedisStore
from jobhive.types.worker import WorkerPacket, parse_worker_id

logger = logging.getLogger(__name__)


def process_alive(pid: int) -> bool:
    """Check a local process with the no-op signal."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    return True


class Host:
    """
    Worker registry for one machine, with read access to all hosts.

    Liveness of a worker on this machine is decided by probing its pid.
    Workers on other machines cannot be signalled, so they count as alive
    while their heartbeat is fresher than ``stale_after`` seconds.
    """

    def __init__(
        self,
        store: RedisStore,
        hostname: str | None = None,
        stale_after: float = 60.0,
        idle_grace: float = 300.0,
        worker_expiry: int = DEFAULT_EXPIRY_TIME,
    ):
        """
        Initialize the host.

        Args:
            store: The namespaced store adapter.
            hostname: This machine's name. Defaults to the system hostname.
            stale_after: Heartbeat age after which a remote worker is dead.
            idle_grace: Seconds an empty host is kept after its last activity.
            worker_expiry: Seconds a stopped worker's record is kept.
        """
        self._store = store
        self.hostname = hostname or socket.gethostname()
        self.stale_after = stale_after
        self.idle_grace = idle_grace
        self.worker_expiry = worker_expiry

    def __str__(self) -> str:
        return self.hostname

    @staticmethod
    def host_key(hostname: str) -> str:
        return KEY_HOST.format(hostname=hostname)

    @staticmethod
    def worker_key(worker_id: str) -> str:
        return KEY_WORKER.format(id=worker_id)

    async def _touch(self, hostname: str) -> None:
        await self._store.sorted_add(KEY_HOSTS, {hostname: time.time()})

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_worker(self, packet: WorkerPacket) -> None:
        """Add a worker to its host set and write its first record."""
        await self._touch(packet.hostname)
        await self.save_packet(packet)
        await self._store.set_add(self.host_key(packet.hostname), packet.id)
        logger.info("Registered worker", extra={"worker_id": packet.id, "host": packet.hostname})

    async def deregister_worker(self, packet: WorkerPacket) -> None:
        """
        Remove a worker from its host set.

        The record is kept as ``terminated`` until the expiry passes.
        """
        await self._store.set_remove(self.host_key(packet.hostname), packet.id)
        packet = packet.model_copy(update={"status": WorkerStatus.TERMINATED, "heartbeat": time.time()})
        await self._store.hash_set(self.worker_key(packet.id), packet.to_record())
        await self._store.expire(self.worker_key(packet.id), self.worker_expiry)
        await self._touch(packet.hostname)
        logger.info("Deregistered worker", extra={"worker_id": packet.id, "host": packet.hostname})

    async def save_packet(self, packet: WorkerPacket) -> None:
        """Publish a worker's status record (heartbeat)."""
        await self._store.hash_set(self.worker_key(packet.id), packet.to_record())
        await self._touch(packet.hostname)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_packet(self, worker_id: str) -> WorkerPacket | None:
        record = await self._store.hash_get_all(self.worker_key(worker_id))
        if not record or "id" not in record:
            return None
        return WorkerPacket.from_record(record)

    async def hostnames(self) -> list[str]:
        return await self._store.sorted_range_by_score(KEY_HOSTS, "-inf", "+inf")

    async def worker_ids(self, hostname: str | None = None) -> list[str]:
        return sorted(await self._store.set_members(self.host_key(hostname or self.hostname)))

    async def workers(self, hostname: str | None = None) -> list[WorkerPacket]:
        """Status records of the workers registered on a host, oldest first."""
        packets = []
        for worker_id in await self.worker_ids(hostname):
            packet = await self.get_packet(worker_id)
            if packet is not None:
                packets.append(packet)
        return sorted(packets, key=lambda p: p.started)

    async def lookup(self, pattern: str) -> list[WorkerPacket]:
        """
        Resolve worker ids on this host.

        Accepts an exact id, a wildcard pattern (``*`` and ``?``) or a
        comma separated list of either.
        """
        workers = await self.workers()
        matched: dict[str, WorkerPacket] = {}
        for part in (p.strip() for p in pattern.split(",")):
            if not part:
                continue
            for packet in workers:
                if packet.id == part or fnmatch.fnmatchcase(packet.id, part):
                    matched[packet.id] = packet
        return list(matched.values())

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    async def is_worker_alive(self, worker_id: str) -> bool:
        """
        Decide whether a worker id belongs to a live process.

        This is the only liveness source the queue's zombie cleanup uses.
        """
        try:
            hostname, pid = parse_worker_id(worker_id)
        except ValueError:
            return False

        if hostname == self.hostname:
            return process_alive(pid)

        packet = await self.get_packet(worker_id)
        if packet is None or packet.status == WorkerStatus.TERMINATED:
            return False
        return packet.age <= self.stale_after

    async def cleanup(self) -> dict[str, list[str]]:
        """
        Remove dead workers from every host, then empty idle hosts.

        Returns:
            ``{"hosts": [...], "workers": [...]}`` of what was removed.
        """
        now = time.time()
        cleaned_hosts: list[str] = []
        cleaned_workers: list[str] = []

        for hostname in await self.hostnames():
            host_key = self.host_key(hostname)
            for worker_id in await self._store.set_members(host_key):
                if await self.is_worker_alive(worker_id):
                    continue
                if not await self._store.set_remove(host_key, worker_id):
                    continue
                await self._store.delete(self.worker_key(worker_id))
                cleaned_workers.append(worker_id)
                logger.warning("Removed dead worker", extra={"worker_id": worker_id, "host": hostname})

            if await self._store.set_count(host_key) > 0:
                continue
            last_seen = await self._store.sorted_score(KEY_HOSTS, hostname) or 0.0
            if now - last_seen < self.idle_grace:
                continue
            if await self._store.sorted_remove(KEY_HOSTS, hostname):
                cleaned_hosts.append(hostname)
                logger.info("Removed idle host", extra={"host": hostname})

        return {"hosts": cleaned_hosts, "workers": sorted(cleaned_workers)}

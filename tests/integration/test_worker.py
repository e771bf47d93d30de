"""
Integration tests for worker functionality.
"""

import asyncio

from jobhive.constants import JobStatus, WorkerStatus
from jobhive.jobs.queue import Queue
from jobhive.reaper.main import Reaper
from jobhive.worker.host import Host
from jobhive.worker.main import Worker
from tests.fakes import DEAD_PID


async def wait_until(predicate, timeout: float = 30.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


class TestWorkerIntegration:
    """Integration tests for worker job processing."""

    async def test_full_job_lifecycle(self, queue: Queue, host: Host):
        """Test complete job lifecycle: push -> claim -> run -> complete -> stop."""
        worker = Worker(queue, host, queues=["emails"], poll_interval=0.1, timeout=30, memory_limit_mb=0)
        task = asyncio.create_task(worker.start())

        job = await queue.push("echo", ["a@b.com"], queue="emails")

        async def finished() -> bool:
            current = await queue.get_job(job.id)
            return current.status == JobStatus.COMPLETE

        await wait_until(finished)

        packet = await host.get_packet(worker.worker_id)
        assert packet.processed == 1
        assert packet.status in (WorkerStatus.IDLE, WorkerStatus.RUNNING)

        worker.stop()
        await asyncio.wait_for(task, timeout=10)

        assert await host.workers() == []
        assert (await host.get_packet(worker.worker_id)).status == WorkerStatus.TERMINATED

    async def test_delayed_job_runs_after_due_time(self, queue: Queue, host: Host):
        worker = Worker(queue, host, queues=["default"], poll_interval=0.1, timeout=30, memory_limit_mb=0)
        job = await queue.later(1, "echo", [])
        task = asyncio.create_task(worker.start())

        async def finished() -> bool:
            current = await queue.get_job(job.id)
            return current.status == JobStatus.COMPLETE

        await wait_until(finished)
        done = await queue.get_job(job.id)
        assert done.started >= job.delayed

        worker.stop()
        await asyncio.wait_for(task, timeout=10)

    async def test_force_stop_cancels_running_job(self, queue: Queue, host: Host):
        worker = Worker(queue, host, poll_interval=0.1, timeout=60, memory_limit_mb=0, cancel_grace=1)
        job = await queue.push("sleep", [60])
        task = asyncio.create_task(worker.start())

        async def running() -> bool:
            return worker.status == WorkerStatus.RUNNING

        await wait_until(running)
        worker.force_stop()
        await asyncio.wait_for(task, timeout=15)

        stopped = await queue.get_job(job.id)
        assert stopped.status == JobStatus.FAILED
        assert stopped.error == "cancelled"

    async def test_reaper_reclaims_job_of_dead_worker(self, queue: Queue, host: Host):
        await queue.push("echo", [])
        job = await queue.dequeue(["default"], worker_id=f"{host.hostname}:{DEAD_PID}")
        delayed = await queue.later(1, "echo", [])

        reaper = Reaper(queue, host, interval_seconds=1)
        counts = await reaper.run_once()

        assert counts["zombie"] == 1
        assert (await queue.get_job(job.id)).error == "zombie"

        await asyncio.sleep(1.1)
        counts = await reaper.run_once()
        assert counts["promoted"] == 1
        assert (await queue.get_job(delayed.id)).status == JobStatus.QUEUED

"""
Periodic maintenance for the queue.

The reaper promotes delayed jobs whose time has come, removes dead
workers and idle hosts, and reclaims jobs whose worker has died. Every
step is idempotent and safe to run from several processes at once.
"""

import asyncio
import logging
import signal

from jobhive.config import get_settings
from jobhive.jobs.queue import Queue
from jobhive.observability.logging import bind_context, setup_logging
from jobhive.observability.metrics import setup_metrics
from jobhive.observability.tracing import setup_tracing
from jobhive.store.connection import close_store, init_store
from jobhive.worker.host import Host

logger = logging.getLogger(__name__)


class Reaper:
    """
    Maintenance loop over the queue and the hosts.

    Runs periodically to:
    1. Promote due delayed jobs to their ready queues
    2. Remove dead workers and empty idle hosts
    3. Fail running jobs owned by dead workers and drop expired records
    """

    def __init__(self, queue: Queue, host: Host, interval_seconds: int | None = None):
        """
        Initialize the reaper.

        Args:
            queue: Queue client.
            host: Host used for worker liveness and cleanup.
            interval_seconds: Seconds between reaper runs.
        """
        settings = get_settings()
        self.queue = queue
        self.host = host
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                counts = await self.run_once()
                if any(counts.values()):
                    logger.info("Reaper pass finished", extra=counts)
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self) -> dict[str, int]:
        """
        Run one maintenance pass (for testing or cron-style execution).

        Returns:
            Counts of promoted jobs, removed hosts and workers, requeued
            claims, reclaimed zombies and deleted processed jobs.
        """
        promoted = await self.queue.promote_due()
        cleaned = await self.host.cleanup()
        jobs = await self.queue.cleanup(self.host)
        return {
            "promoted": promoted,
            "hosts": len(cleaned["hosts"]),
            "workers": len(cleaned["workers"]),
            "requeued": jobs["requeued"],
            "zombie": jobs["zombie"],
            "processed": jobs["processed"],
        }


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging()
    settings = get_settings()
    metrics = setup_metrics()
    setup_tracing()

    store = await init_store()
    queue = Queue(
        store,
        expiry_seconds=settings.job_expiry_seconds,
        default_delay=settings.default_delay_seconds,
        metrics=metrics,
    )
    host = Host(
        store,
        stale_after=settings.worker_stale_after_seconds,
        idle_grace=settings.host_idle_grace_seconds,
        worker_expiry=settings.worker_expiry_seconds,
    )
    bind_context(host=host.hostname)

    reaper = Reaper(queue, host)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(reaper.stop()))

    try:
        await reaper.start()
    finally:
        await close_store()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()

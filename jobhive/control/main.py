"""
Control server entrypoint.
"""

import asyncio
import logging
import signal

from jobhive.config import get_settings
from jobhive.control.commands import CommandContext
from jobhive.control.server import ControlServer
from jobhive.jobs.queue import Queue
from jobhive.observability.logging import bind_context, setup_logging
from jobhive.observability.metrics import setup_metrics
from jobhive.observability.tracing import setup_tracing
from jobhive.store.connection import close_store, init_store
from jobhive.worker.host import Host

logger = logging.getLogger(__name__)


async def run_async() -> None:
    """Run the control server asynchronously."""
    setup_logging()
    settings = get_settings()
    metrics = setup_metrics()
    if settings.prometheus_port:
        metrics.serve(settings.prometheus_port)
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

    server = ControlServer(
        CommandContext(
            queue=queue,
            host=host,
            timeout=settings.control_command_timeout_seconds,
            metrics=metrics,
        ),
        host=settings.control_host,
        port=settings.control_port,
        retry_bind=settings.control_retry_bind,
        retry_interval=settings.control_retry_interval_seconds,
    )

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(server.shutdown()))

    try:
        await server.serve_forever()
    finally:
        await close_store()


def run() -> None:
    """Run the control server."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()

"""
Worker process for executing jobs.

The worker claims jobs from its watched queues in priority order, runs
each one in a child process, and publishes its status record to the
store. It reacts to five remote actions (pause, resume, stop, force stop
and cancel job) delivered as OS signals.
"""

import asyncio
import logging
import os
import time

import psutil

from jobhive.config import get_settings
from jobhive.constants import (
    ACTION_SIGNALS,
    EXTRA_ACTION_SIGNALS,
    REASON_CANCELLED,
    REASON_MEMORY,
    REASON_TIMEOUT,
    SPAN_EXECUTE_JOB,
    WorkerAction,
    WorkerStatus,
)
from jobhive.exceptions import (
    JobExecutionFailure,
    JobMemoryExceeded,
    JobTimeout,
    StoreUnavailable,
)
from jobhive.jobs.queue import Queue
from jobhive.observability.logging import bind_context, setup_logging
from jobhive.observability.metrics import get_metrics, setup_metrics
from jobhive.observability.tracing import get_tracer, setup_tracing
from jobhive.store.adapter import retry_with_backoff
from jobhive.store.connection import close_store, init_store
from jobhive.types.job import Job, JobContext, JobResult
from jobhive.types.worker import WorkerPacket
from jobhive.worker.executor import JobExecutor
from jobhive.worker.host import Host

logger = logging.getLogger(__name__)

# Seconds between supervision checks while a job runs
SUPERVISE_TICK = 0.1


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Atomic claim via LMOVE into its own claim list, in declared queue order
    - Delayed job promotion on every poll
    - One child process per job with timeout, memory and cancel enforcement
    - Heartbeat published every poll interval in every state
    - Pause/resume and graceful/forced shutdown on signals
    """

    def __init__(
        self,
        queue: Queue,
        host: Host,
        queues: list[str] | None = None,
        poll_interval: float | None = None,
        timeout: float | None = None,
        memory_limit_mb: int | None = None,
        cancel_grace: float | None = None,
        pid: int | None = None,
    ):
        """
        Initialize the worker.

        Args:
            queue: The queue client.
            host: The host registry for this machine.
            queues: Watched queues in priority order.
            poll_interval: Seconds between polls and heartbeats.
            timeout: Seconds a job may run before it is killed (0 = no limit).
            memory_limit_mb: Memory ceiling for a job process (0 = no limit).
            cancel_grace: Seconds between interrupt and kill of a job process.
            pid: Process id to report. Defaults to this process.
        """
        settings = get_settings()

        self.queue = queue
        self.host = host
        self.queues = queues or settings.queue_list
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self.timeout = settings.worker_job_timeout_seconds if timeout is None else timeout
        self.memory_limit_mb = settings.worker_memory_limit_mb if memory_limit_mb is None else memory_limit_mb
        self.cancel_grace = settings.worker_cancel_grace_seconds if cancel_grace is None else cancel_grace
        self.store_retry_attempts = settings.store_retry_attempts
        self.store_retry_delay = settings.store_retry_base_delay_seconds
        self.pid = pid or os.getpid()
        self.worker_id = f"{host.hostname}:{self.pid}"

        self.packet = WorkerPacket(
            id=self.worker_id,
            hostname=host.hostname,
            pid=self.pid,
            queues=list(self.queues),
            interval=self.poll_interval,
            timeout=self.timeout,
            memory_limit=self.memory_limit_mb,
        )

        self._shutdown = False
        self._paused = False
        self._cancel_requested = False
        self._wakeup = asyncio.Event()
        self._executor: JobExecutor | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._metrics = get_metrics()

    def __str__(self) -> str:
        return self.worker_id

    @property
    def status(self) -> WorkerStatus:
        return self.packet.status

    @property
    def is_shutting_down(self) -> bool:
        return self._shutdown

    # ------------------------------------------------------------------
    # Remote actions
    # ------------------------------------------------------------------

    def pause(self) -> None:
        """Stop claiming jobs; a running job finishes first."""
        logger.info("Pausing worker", extra={"worker_id": self.worker_id})
        self._paused = True
        self._wakeup.set()

    def resume(self) -> None:
        logger.info("Resuming worker", extra={"worker_id": self.worker_id})
        self._paused = False
        self._wakeup.set()

    def stop(self) -> None:
        """Finish the current job, then shut down."""
        logger.info("Stopping worker", extra={"worker_id": self.worker_id})
        self._shutdown = True
        self._wakeup.set()

    def force_stop(self) -> None:
        """Cancel the current job, then shut down."""
        logger.info("Force stopping worker", extra={"worker_id": self.worker_id})
        self._shutdown = True
        if self._executor is not None:
            self._cancel_requested = True
        self._wakeup.set()

    def cancel_job(self) -> None:
        """Interrupt the current job; the worker keeps running."""
        if self._executor is None:
            logger.info("No running job to cancel", extra={"worker_id": self.worker_id})
            return
        logger.info(
            "Cancelling job",
            extra={"worker_id": self.worker_id, "job_id": self._executor.context.job_id},
        )
        self._cancel_requested = True

    def handle_action(self, action: WorkerAction) -> None:
        """Dispatch a remote action to its handler."""
        handlers = {
            WorkerAction.PAUSE: self.pause,
            WorkerAction.RESUME: self.resume,
            WorkerAction.STOP: self.stop,
            WorkerAction.FORCE_STOP: self.force_stop,
            WorkerAction.CANCEL: self.cancel_job,
        }
        handlers[action]()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Map OS signals onto worker actions in the running loop."""
        loop = loop or asyncio.get_running_loop()
        for action, sig in ACTION_SIGNALS.items():
            loop.add_signal_handler(sig, self.handle_action, action)
        for sig, action in EXTRA_ACTION_SIGNALS.items():
            loop.add_signal_handler(sig, self.handle_action, action)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run the worker until a stop action arrives."""
        await self.startup()
        try:
            while not self._shutdown:
                try:
                    worked = await retry_with_backoff(
                        self.run_once,
                        attempts=self.store_retry_attempts,
                        base_delay=self.store_retry_delay,
                    )
                except StoreUnavailable as e:
                    logger.critical(
                        "Store unavailable, giving up",
                        extra={"worker_id": self.worker_id, "attempts": self.store_retry_attempts, "error": str(e)},
                    )
                    raise

                if not worked and not self._shutdown:
                    await self._sleep(self.poll_interval)
        finally:
            await self.shutdown()

    async def startup(self) -> None:
        """Register with the host and begin heartbeating."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "queues": self.queues, "interval": self.poll_interval},
        )
        await retry_with_backoff(
            lambda: self.host.register_worker(self.packet),
            attempts=self.store_retry_attempts,
            base_delay=self.store_retry_delay,
        )
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        await self._set_status(WorkerStatus.IDLE)

    async def shutdown(self) -> None:
        """Stop heartbeating and deregister."""
        await self._set_status(WorkerStatus.SHUTTING_DOWN)

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        try:
            await retry_with_backoff(
                lambda: self.host.deregister_worker(self.packet),
                attempts=self.store_retry_attempts,
                base_delay=self.store_retry_delay,
            )
        except StoreUnavailable:
            logger.error("Could not deregister worker", extra={"worker_id": self.worker_id})
        self.packet = self.packet.model_copy(update={"status": WorkerStatus.TERMINATED})
        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def run_once(self) -> bool:
        """
        Run one poll: promote due jobs, then claim and perform one job.

        Returns:
            True if a job was performed.

        Raises:
            StoreUnavailable: If promotion or the claim could not reach the store.
        """
        if self._paused:
            if self.status != WorkerStatus.PAUSED:
                await self._set_status(WorkerStatus.PAUSED)
            return False

        await self.queue.promote_due()
        job = await self.queue.dequeue(self.queues, worker_id=self.worker_id, pid=self.pid)

        if job is None:
            if self.status != WorkerStatus.IDLE:
                await self._set_status(WorkerStatus.IDLE)
            return False

        await self._perform(job)
        return True

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _perform(self, job: Job) -> None:
        """
        Execute a claimed job in a child process and record the outcome.

        Nothing that happens to the job escapes this method.
        """
        executor = JobExecutor(JobContext.from_job(job, self.worker_id))
        self._executor = executor
        self._cancel_requested = False
        started = time.time()

        try:
            try:
                job_pid = executor.start()
            except OSError as e:
                logger.exception("Could not start job process", extra={"job_id": job.id})
                await self._record_failure(job, f"Could not start job process: {e}", started)
                return

            await self._set_status(WorkerStatus.RUNNING, job_id=job.id, job_pid=job_pid, job_started=started)
            try:
                job = await self.queue.mark_pid(job, job_pid)
            except StoreUnavailable:
                logger.warning("Could not record job pid", extra={"job_id": job.id})

            logger.info(
                "Executing job",
                extra={"job_id": job.id, "class": job.job_class, "queue": job.queue, "attempt": job.attempts},
            )

            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("job_class", job.job_class)
                span.set_attribute("queue", job.queue)
                try:
                    result = await self._supervise(executor)
                except JobExecutionFailure as e:
                    result = JobResult(success=False, error=e.reason)

            if result.success:
                await self._record_success(job, result, started)
            else:
                await self._record_failure(job, result.error or "Unknown error", started)
        finally:
            executor.close()
            self._executor = None
            self._cancel_requested = False
            next_status = WorkerStatus.PAUSED if self._paused else WorkerStatus.IDLE
            await self._set_status(next_status, job_id=None, job_pid=None, job_started=None)

    async def _supervise(self, executor: JobExecutor) -> JobResult:
        """
        Wait for the child while enforcing cancel, timeout and memory limits.

        Raises:
            JobExecutionFailure: When the worker had to stop the child.
        """
        deadline = time.monotonic() + self.timeout if self.timeout and self.timeout > 0 else None
        limit_bytes = self.memory_limit_mb * 1024 * 1024 if self.memory_limit_mb else 0

        while not await executor.wait(SUPERVISE_TICK):
            if self._cancel_requested:
                await self._set_status(WorkerStatus.CANCELLING)
                await executor.stop(self.cancel_grace)
                raise JobExecutionFailure(REASON_CANCELLED)

            if deadline is not None and time.monotonic() >= deadline:
                logger.warning("Job timed out", extra={"job_id": executor.context.job_id, "timeout": self.timeout})
                await executor.stop(self.cancel_grace)
                raise JobTimeout(REASON_TIMEOUT)

            if limit_bytes and executor.memory_usage() > limit_bytes:
                logger.warning(
                    "Job exceeded memory limit",
                    extra={"job_id": executor.context.job_id, "limit_mb": self.memory_limit_mb},
                )
                await executor.stop(self.cancel_grace)
                raise JobMemoryExceeded(REASON_MEMORY)

        return executor.result()

    async def _record_success(self, job: Job, result: JobResult, started: float) -> None:
        duration = time.time() - started
        try:
            await retry_with_backoff(
                lambda: self.queue.complete(job, result.output),
                attempts=self.store_retry_attempts,
                base_delay=self.store_retry_delay,
            )
        except StoreUnavailable:
            logger.error("Could not record job completion", extra={"job_id": job.id})
        self.packet.processed += 1
        self._metrics.record_job_completed(job.queue, "complete", duration)
        logger.info("Job completed successfully", extra={"job_id": job.id, "duration": f"{duration:.2f}s"})

    async def _record_failure(self, job: Job, reason: str, started: float) -> None:
        duration = time.time() - started
        try:
            await retry_with_backoff(
                lambda: self.queue.fail(job, reason),
                attempts=self.store_retry_attempts,
                base_delay=self.store_retry_delay,
            )
        except StoreUnavailable:
            logger.error("Could not record job failure", extra={"job_id": job.id})
        if reason == REASON_CANCELLED:
            self.packet.cancelled += 1
        else:
            self.packet.failed += 1
        self._metrics.record_job_completed(job.queue, "failed", duration)
        logger.warning("Job failed", extra={"job_id": job.id, "error": reason})

    # ------------------------------------------------------------------
    # Status publication
    # ------------------------------------------------------------------

    async def _set_status(self, status: WorkerStatus, **fields) -> None:
        """Apply a state transition and publish the record."""
        if status != self.packet.status:
            logger.debug(
                "Worker state change",
                extra={"worker_id": self.worker_id, "from": self.packet.status.value, "to": status.value},
            )
        self.packet = self.packet.model_copy(update={"status": status, **fields})
        await self._publish()

    async def _publish(self) -> None:
        self.packet.heartbeat = time.time()
        try:
            self.packet.memory = psutil.Process(os.getpid()).memory_info().rss
        except psutil.Error:
            pass
        try:
            await self.host.save_packet(self.packet)
        except StoreUnavailable:
            logger.warning("Could not publish worker status", extra={"worker_id": self.worker_id})

    async def _heartbeat_loop(self) -> None:
        """Republish the status record every poll interval in any state."""
        while True:
            try:
                await asyncio.sleep(self.poll_interval)
                await self._publish()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")

    async def _sleep(self, seconds: float) -> None:
        """Sleep until the timeout or until a remote action wakes the worker."""
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging()
    settings = get_settings()
    metrics = setup_metrics()
    if settings.prometheus_port:
        metrics.serve(settings.prometheus_port)
    setup_tracing()

    store = await init_store()
    queue = Queue(store, expiry_seconds=settings.job_expiry_seconds, default_delay=settings.default_delay_seconds)
    host = Host(
        store,
        stale_after=settings.worker_stale_after_seconds,
        idle_grace=settings.host_idle_grace_seconds,
        worker_expiry=settings.worker_expiry_seconds,
    )
    worker = Worker(queue, host)
    bind_context(worker_id=worker.worker_id, host=host.hostname)
    worker.install_signal_handlers()

    try:
        await worker.start()
    finally:
        await close_store()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()

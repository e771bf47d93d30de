"""
Per-job child process executor.

Each job runs in its own spawned process so a crashing or runaway job
cannot corrupt the worker or block its signal handling. The worker owns
one JobExecutor for the duration of a job and drives it through
start / wait / interrupt / kill.
"""

import asyncio
import logging
import multiprocessing
import signal
import time
from multiprocessing.connection import Connection

import psutil

from jobhive.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

_mp = multiprocessing.get_context("spawn")

# Seconds between liveness checks while waiting on the child
POLL_TICK = 0.05


def _run_job(context: JobContext, conn: Connection) -> None:
    """Child process entry point."""
    # The worker decides what happens on Ctrl-C, not the job
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    from jobhive.observability.logging import setup_logging
    from jobhive.worker.handlers import execute_job

    setup_logging()
    result = asyncio.run(execute_job(context))
    conn.send(result.model_dump(mode="json"))
    conn.close()


class JobExecutor:
    """
    Handle to the child process executing one job.

    The result travels back over a one-way pipe and is drained while
    waiting, so a large result can never block the child on exit.
    """

    def __init__(self, context: JobContext):
        """
        Args:
            context: The job context handed to the child.
        """
        self.context = context
        self._reader, self._writer = _mp.Pipe(duplex=False)
        self._process = _mp.Process(
            target=_run_job,
            args=(context, self._writer),
            name=f"jobhive-job-{context.job_id}",
            daemon=True,
        )
        self._payload: dict | None = None
        self.started_at: float | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def exitcode(self) -> int | None:
        return self._process.exitcode

    def start(self) -> int:
        """Spawn the child and return its pid."""
        self._process.start()
        self._writer.close()
        self.started_at = time.time()
        logger.debug("Job process started", extra={"job_id": self.context.job_id, "pid": self.pid})
        return self._process.pid

    def poll(self) -> bool:
        """Drain any pending result; True once the child has exited."""
        try:
            while self._payload is None and self._reader.poll():
                self._payload = self._reader.recv()
        except (EOFError, OSError):
            pass
        return not self._process.is_alive()

    async def wait(self, timeout: float | None = None) -> bool:
        """
        Wait for the child to exit without blocking the event loop.

        Returns:
            True if the child exited, False if the timeout elapsed first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.poll():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            await asyncio.sleep(POLL_TICK)
        self._process.join()
        self.poll()
        return True

    def interrupt(self) -> None:
        """Ask the child to stop (SIGTERM)."""
        if self._process.is_alive():
            self._process.terminate()

    def kill(self) -> None:
        """Stop the child immediately (SIGKILL)."""
        if self._process.is_alive():
            self._process.kill()

    async def stop(self, grace: float) -> None:
        """Interrupt, then kill if the child outlives the grace period."""
        self.interrupt()
        if not await self.wait(grace):
            logger.warning(
                "Job process ignored interrupt, killing",
                extra={"job_id": self.context.job_id, "pid": self.pid},
            )
            self.kill()
            await self.wait()

    def memory_usage(self) -> int:
        """Resident memory of the child and its descendants in bytes."""
        if self.pid is None:
            return 0
        try:
            proc = psutil.Process(self.pid)
            total = proc.memory_info().rss
            for child in proc.children(recursive=True):
                try:
                    total += child.memory_info().rss
                except psutil.Error:
                    continue
            return total
        except psutil.Error:
            return 0

    def result(self) -> JobResult:
        """
        The job outcome once the child has exited.

        A child that exited without reporting a result is a failure.
        """
        self.poll()
        if self._payload is not None:
            return JobResult.model_validate(self._payload)
        code = self._process.exitcode
        if code is None:
            return JobResult(success=False, error="Job process is still running")
        if code < 0:
            return JobResult(success=False, error=f"Job process killed by signal {-code}")
        return JobResult(success=False, error=f"Job process exited with code {code} without a result")

    def close(self) -> None:
        self._reader.close()
        if not self._process.is_alive():
            self._process.close()

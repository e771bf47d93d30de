"""
Queue client.

Owns ready lists, the delayed set, the running index, the processed index
and the global stats counters. No job id is ever out of every index:

- a claim LMOVEs the id from its ready list into the claiming worker's
  claim list, then a single MULTI/EXEC marks it running, adds it to the
  running index and drops the claim entry;
- promotion, finishing and zombie reclamation each commit as one
  MULTI/EXEC, with WATCH on the job record where exactly one caller may win.

Ids left in the claim list of a dead worker are moved back to the head of
their ready list by cleanup.
"""

import logging
import os
import socket
import time
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any, Protocol

from jobhive.constants import (
    DEFAULT_EXPIRY_TIME,
    DEFAULT_QUEUE,
    KEY_CLAIMED,
    KEY_DELAYED,
    KEY_PROCESSED,
    KEY_QUEUE,
    KEY_QUEUES,
    KEY_RUNNING,
    KEY_STATS,
    REASON_CANCELLED,
    REASON_ZOMBIE,
    SPAN_CLEANUP,
    SPAN_PROMOTE_DUE,
    JobStatus,
)
from jobhive.exceptions import InvalidJob, StoreConflict, StoreUnavailable
from jobhive.jobs.args import parse_delay
from jobhive.jobs.repository import JobRepository
from jobhive.observability.metrics import MetricsCollector, get_metrics
from jobhive.observability.tracing import get_tracer
from jobhive.store.adapter import RedisStore
from jobhive.types.job import Job
from jobhive.types.worker import parse_worker_id

logger = logging.getLogger(__name__)

Delay = float | int | timedelta | datetime

# Counters kept in the stats hash
STAT_FIELDS = ("queued", "delayed", "promoted", "processed", "failed", "cancelled", "requeued")

# Optimistic retries for one watched job record before leaving it to the next pass
WATCH_ATTEMPTS = 5


class WorkerLiveness(Protocol):
    """Anything that can tell whether a worker id belongs to a live process."""

    async def is_worker_alive(self, worker_id: str) -> bool: ...


def resolve_due_time(delay: Delay, now: float | None = None) -> float:
    """
    Turn a typed delay into an absolute epoch timestamp.

    Durations (seconds or timedelta) are relative to now; datetimes are
    absolute and must lie in the future.

    Raises:
        InvalidJob: For negative durations, past timestamps or other types.
    """
    now = time.time() if now is None else now
    if isinstance(delay, datetime):
        due = delay.timestamp()
        if due <= now:
            raise InvalidJob(f"Delay timestamp {delay.isoformat()} is in the past")
        return due
    if isinstance(delay, timedelta):
        delay = delay.total_seconds()
    if isinstance(delay, bool) or not isinstance(delay, (int, float)):
        raise InvalidJob(f"Invalid delay type {type(delay).__name__}")
    if delay < 0:
        raise InvalidJob(f"Delay must not be negative, got {delay}")
    return now + delay


class Queue:
    """
    Redis-backed queue client.

    Constructed once per process and passed to the worker, reaper and
    control server.
    """

    def __init__(
        self,
        store: RedisStore,
        expiry_seconds: int = DEFAULT_EXPIRY_TIME,
        default_queue: str = DEFAULT_QUEUE,
        default_delay: float = 0,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the queue client.

        Args:
            store: The namespaced store adapter.
            expiry_seconds: How long finished jobs are kept.
            default_queue: Queue used when a producer names none.
            default_delay: Delay in seconds used when ``later`` gets none.
            metrics: Optional metrics collector.
        """
        self._store = store
        self._jobs = JobRepository(store)
        self.expiry_seconds = expiry_seconds
        self.default_queue = default_queue
        self.default_delay = default_delay
        self._metrics = metrics or get_metrics()
        # Owner of claims made without a worker id
        self.owner = f"{socket.gethostname()}:{os.getpid()}"

    @property
    def jobs(self) -> JobRepository:
        return self._jobs

    @staticmethod
    def ready_key(queue_name: str) -> str:
        return KEY_QUEUE.format(name=queue_name)

    @staticmethod
    def claim_key(queue_name: str, worker_id: str) -> str:
        return KEY_CLAIMED.format(queue=queue_name, worker=worker_id)

    @staticmethod
    def parse_claim_key(key: str) -> tuple[str, str]:
        """
        Split a claim list key into its queue name and owning worker id.

        Raises:
            ValueError: If the key does not end in a ``<hostname>:<pid>`` id.
        """
        rest = key.removeprefix(KEY_CLAIMED.split("{", 1)[0])
        queue_name, hostname, pid = rest.rsplit(":", 2)
        worker_id = f"{hostname}:{pid}"
        parse_worker_id(worker_id)
        return queue_name, worker_id

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(self, queue_name: str, job: Job) -> Job:
        """
        Append a job to the tail of a ready list.

        Raises:
            InvalidJob: If the queue name is empty.
            StoreUnavailable: If the store cannot be reached.
        """
        if not queue_name:
            raise InvalidJob("Queue name must be a non-empty string")
        job = job.model_copy(update={"queue": queue_name, "status": JobStatus.QUEUED, "delayed": None})

        async with self._store.transaction() as tx:
            tx.hash_set(self._jobs.key(job.id), job.to_record())
            tx.set_add(KEY_QUEUES, queue_name)
            tx.push(self.ready_key(queue_name), job.id)
            tx.hash_incr(KEY_STATS, "queued")
            await tx.execute()

        self._metrics.record_job_enqueued(queue_name)
        logger.info("Job queued", extra={"job_id": job.id, "queue": queue_name, "class": job.job_class})
        return job

    async def enqueue_delayed(self, delay: Delay, queue_name: str, job: Job) -> Job:
        """
        Store a job in the delayed set, scored by its absolute due time.

        The ready list is never touched; promote_due moves the job later.

        Raises:
            InvalidJob: If the delay is invalid or in the past.
        """
        if not queue_name:
            raise InvalidJob("Queue name must be a non-empty string")
        due = resolve_due_time(delay)
        job = job.model_copy(update={"queue": queue_name, "status": JobStatus.DELAYED, "delayed": due})

        async with self._store.transaction() as tx:
            tx.hash_set(self._jobs.key(job.id), job.to_record())
            tx.set_add(KEY_QUEUES, queue_name)
            tx.sorted_add(KEY_DELAYED, {job.id: due})
            tx.hash_incr(KEY_STATS, "delayed")
            await tx.execute()

        self._metrics.record_job_enqueued(queue_name, delayed=True)
        logger.info(
            "Job delayed",
            extra={"job_id": job.id, "queue": queue_name, "due": datetime.fromtimestamp(due).isoformat()},
        )
        return job

    async def push(
        self,
        job_class: str,
        args: list[Any] | None = None,
        queue: str | None = None,
    ) -> Job | None:
        """
        Producer API: queue a job for immediate execution.

        Returns:
            The queued Job, or None if it could not be queued.
        """
        try:
            job = Job.create(queue or self.default_queue, job_class, args)
            return await self.enqueue(job.queue, job)
        except (InvalidJob, StoreUnavailable) as e:
            logger.error("Job was not queued", extra={"class": job_class, "error": str(e)})
            return None

    async def later(
        self,
        delay: Any,
        job_class: str,
        args: list[Any] | None = None,
        queue: str | None = None,
    ) -> Job | None:
        """
        Producer API: queue a job to run after a delay or at a timestamp.

        The delay is normalized here, at the producer boundary. A missing
        delay means ``default_delay`` seconds.

        Returns:
            The delayed Job, or None if it could not be queued.
        """
        try:
            job = Job.create(queue or self.default_queue, job_class, args)
            return await self.enqueue_delayed(parse_delay(delay, default=self.default_delay), job.queue, job)
        except (InvalidJob, StoreUnavailable) as e:
            logger.error("Delayed job was not queued", extra={"class": job_class, "error": str(e)})
            return None

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def dequeue(
        self,
        queue_names: Sequence[str],
        worker_id: str | None = None,
        pid: int | None = None,
    ) -> Job | None:
        """
        Claim the next job from the first non-empty queue, in declared order.

        The id is LMOVEd into this worker's claim list, so two workers can
        never claim the same id and a failure before the job is marked
        running leaves it where this worker (or cleanup) picks it up again.
        A named worker finishes a claim interrupted that way before making a
        new one; claims made without a worker id are recovered by cleanup.

        Args:
            queue_names: Watched queues in priority order.
            worker_id: Id of the claiming worker.
            pid: Process id owning the job.

        Returns:
            The job, now marked running, or None if every queue is empty.
        """
        owner = worker_id or self.owner

        for name in queue_names if worker_id else ():
            claim = self.claim_key(name, owner)
            for job_id in await self._store.list_range(claim):
                job = await self._activate(claim, job_id, worker_id, pid)
                if job is not None:
                    logger.info("Resumed interrupted claim", extra={"job_id": job.id, "queue": name})
                    return job

        for name in queue_names:
            claim = self.claim_key(name, owner)
            while True:
                job_id = await self._store.move(self.ready_key(name), claim)
                if job_id is None:
                    break
                job = await self._activate(claim, job_id, worker_id, pid)
                if job is not None:
                    return job
        return None

    async def _activate(self, claim: str, job_id: str, worker_id: str | None, pid: int | None) -> Job | None:
        """Mark a claimed job running and drop it from the claim list, atomically."""
        job = await self._jobs.get(job_id)
        if job is None:
            logger.warning("Dropped id of missing job", extra={"job_id": job_id, "claim": claim})
            await self._store.list_remove(claim, job_id)
            return None

        job, changed = self._jobs.changes(
            job,
            status=JobStatus.RUNNING,
            worker=worker_id,
            pid=pid,
            started=time.time(),
            attempts=job.attempts + 1,
        )
        async with self._store.transaction() as tx:
            tx.hash_set(self._jobs.key(job_id), changed)
            tx.set_add(KEY_RUNNING, job_id)
            tx.list_remove(claim, job_id)
            await tx.execute()
        return job

    async def promote_due(self, now: float | None = None, limit: int = 100) -> int:
        """
        Move due delayed jobs onto their ready lists.

        Each job is promoted by one MULTI/EXEC (ZREM, status, RPUSH) under a
        WATCH on its record, so concurrent callers promote it exactly once
        and a failure never leaves it out of both the delayed set and its
        ready list.

        Returns:
            Number of jobs this call promoted.
        """
        now = time.time() if now is None else now
        promoted = 0

        with get_tracer().start_as_current_span(SPAN_PROMOTE_DUE):
            due_ids = await self._store.sorted_range_by_score(KEY_DELAYED, "-inf", now, limit=limit)
            for job_id in due_ids:
                if await self._promote(job_id):
                    promoted += 1

        if promoted:
            self._metrics.record_promoted(promoted)
            logger.info("Promoted delayed jobs", extra={"count": promoted})
        return promoted

    async def _promote(self, job_id: str) -> bool:
        record_key = self._jobs.key(job_id)
        for _ in range(WATCH_ATTEMPTS):
            try:
                async with self._store.transaction() as tx:
                    await tx.watch(record_key)
                    record = await tx.hash_get_all(record_key)
                    tx.multi()
                    tx.sorted_remove(KEY_DELAYED, job_id)
                    if not record or "id" not in record:
                        await tx.execute()
                        logger.warning("Delayed job record missing", extra={"job_id": job_id})
                        return False
                    job = Job.from_record(record)
                    if job.status != JobStatus.DELAYED:
                        # another caller promoted it already
                        await tx.execute()
                        return False
                    tx.hash_set(record_key, {"status": JobStatus.QUEUED.value})
                    tx.set_add(KEY_QUEUES, job.queue)
                    tx.push(self.ready_key(job.queue), job_id)
                    tx.hash_incr(KEY_STATS, "promoted")
                    await tx.execute()
                    return True
            except StoreConflict:
                continue
        logger.debug("Promotion contended, leaving for next pass", extra={"job_id": job_id})
        return False

    # ------------------------------------------------------------------
    # Finish
    # ------------------------------------------------------------------

    async def mark_pid(self, job: Job, pid: int) -> Job:
        """Record the process actually executing the job."""
        return await self._jobs.update(job, pid=pid)

    async def complete(self, job: Job, result: Any = None) -> Job:
        """Mark a running job complete."""
        return await self._finish(job, JobStatus.COMPLETE, result=result)

    async def fail(self, job: Job, reason: str) -> Job:
        """Mark a running job failed with a reason."""
        return await self._finish(job, JobStatus.FAILED, error=reason)

    async def _finish(
        self,
        job: Job,
        status: JobStatus,
        result: Any = None,
        error: str | None = None,
    ) -> Job:
        finished = time.time()
        job, changed = self._jobs.changes(job, status=status, finished=finished, result=result, error=error)
        if status == JobStatus.COMPLETE:
            counter = "processed"
        elif error == REASON_CANCELLED:
            counter = "cancelled"
        else:
            counter = "failed"

        async with self._store.transaction() as tx:
            tx.hash_set(self._jobs.key(job.id), changed)
            tx.set_remove(KEY_RUNNING, job.id)
            tx.sorted_add(KEY_PROCESSED, {job.id: finished})
            tx.expire(self._jobs.key(job.id), self.expiry_seconds)
            tx.hash_incr(KEY_STATS, counter)
            await tx.execute()
        return job

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup(self, liveness: WorkerLiveness, now: float | None = None) -> dict[str, int]:
        """
        Recover the work of dead workers and delete expired finished jobs.

        - ids in a dead worker's claim list go back to the head of their
          ready list;
        - a running job is a zombie when its owning worker fails the host
          liveness check, and is marked failed;
        - finished jobs older than the expiry are deleted.

        Returns:
            ``{"requeued": n, "zombie": n, "processed": n}``
        """
        now = time.time() if now is None else now
        requeued = 0
        zombies = 0
        processed = 0

        with get_tracer().start_as_current_span(SPAN_CLEANUP):
            for claim in await self._store.keys(KEY_CLAIMED.format(queue="*", worker="*")):
                requeued += await self._requeue_claims(claim, liveness)

            for job_id in await self._store.set_members(KEY_RUNNING):
                job = await self._jobs.get(job_id)
                if job is None or job.status != JobStatus.RUNNING:
                    await self._store.set_remove(KEY_RUNNING, job_id)
                    continue

                if job.worker and await liveness.is_worker_alive(job.worker):
                    continue

                if await self._reclaim(job):
                    zombies += 1
                    logger.warning("Reclaimed zombie job", extra={"job_id": job_id, "worker": job.worker})

            cutoff = now - self.expiry_seconds
            for job_id in await self._store.sorted_range_by_score(KEY_PROCESSED, "-inf", cutoff):
                if not await self._store.sorted_remove(KEY_PROCESSED, job_id):
                    continue
                await self._jobs.delete(job_id)
                processed += 1

        self._metrics.record_zombies(zombies)
        return {"requeued": requeued, "zombie": zombies, "processed": processed}

    async def _requeue_claims(self, claim: str, liveness: WorkerLiveness) -> int:
        try:
            queue_name, owner = self.parse_claim_key(claim)
        except ValueError:
            logger.warning("Ignoring malformed claim list", extra={"key": claim})
            return 0
        if await liveness.is_worker_alive(owner):
            return 0

        moved = 0
        # LMOVE hands each id to exactly one concurrent cleaner
        while (job_id := await self._store.move(claim, self.ready_key(queue_name), "RIGHT", "LEFT")) is not None:
            moved += 1
            await self._store.hash_incr(KEY_STATS, "requeued")
            logger.warning("Requeued job of dead worker", extra={"job_id": job_id, "worker": owner})
        return moved

    async def _reclaim(self, job: Job) -> bool:
        """Fail a zombie job; WATCH on its record lets exactly one cleaner commit."""
        finished = time.time()
        job, changed = self._jobs.changes(job, status=JobStatus.FAILED, finished=finished, error=REASON_ZOMBIE)

        try:
            async with self._store.transaction() as tx:
                await tx.watch(self._jobs.key(job.id))
                if not await tx.is_member(KEY_RUNNING, job.id):
                    return False
                tx.multi()
                tx.set_remove(KEY_RUNNING, job.id)
                tx.hash_set(self._jobs.key(job.id), changed)
                tx.sorted_add(KEY_PROCESSED, {job.id: finished})
                tx.expire(self._jobs.key(job.id), self.expiry_seconds)
                tx.hash_incr(KEY_STATS, "failed")
                removed, *_ = await tx.execute()
        except StoreConflict:
            # the record changed under us; whoever changed it handled the job
            return False
        return bool(removed)

    # ------------------------------------------------------------------
    # Inspection and maintenance
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> Job | None:
        return await self._jobs.get(job_id)

    async def size(self, queue_name: str) -> int:
        """Number of ready jobs in a queue."""
        depth = await self._store.length(self.ready_key(queue_name))
        self._metrics.update_queue_depth(queue_name, depth)
        return depth

    async def queues(self) -> list[str]:
        """All queue names that have ever received a job."""
        return sorted(await self._store.set_members(KEY_QUEUES))

    async def delayed_count(self) -> int:
        return await self._store.sorted_count(KEY_DELAYED)

    async def stats(self) -> dict[str, int]:
        """Global job counters since the namespace was last cleared."""
        raw = await self._store.hash_get_all(KEY_STATS)
        counters = {name: 0 for name in STAT_FIELDS}
        counters.update({name: int(value) for name, value in raw.items()})
        return counters

    async def clear(self) -> int:
        """
        Delete every key in the namespace: jobs, queues, workers, hosts and stats.

        Returns:
            Number of keys deleted.
        """
        keys = await self._store.keys("*")
        deleted = await self._store.delete(*keys)
        logger.warning("Cleared all queue data", extra={"namespace": self._store.namespace, "keys": deleted})
        return deleted

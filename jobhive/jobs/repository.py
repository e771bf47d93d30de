"""
Job repository for store operations.
Reads and writes job records; queue membership lives in jobhive.jobs.queue.
"""

import logging
from typing import Any

from jobhive.constants import KEY_JOB
from jobhive.store.adapter import RedisStore
from jobhive.types.job import Job

logger = logging.getLogger(__name__)


class JobRepository:
    """Repository for job records stored as Redis hashes."""

    def __init__(self, store: RedisStore):
        """
        Initialize the repository with a store adapter.

        Args:
            store: The namespaced store adapter.
        """
        self._store = store

    @staticmethod
    def key(job_id: str) -> str:
        return KEY_JOB.format(id=job_id)

    async def save(self, job: Job) -> Job:
        """Write every field of the job record."""
        await self._store.hash_set(self.key(job.id), job.to_record())
        return job

    async def update(self, job: Job, **fields: Any) -> Job:
        """
        Apply field changes to a job and persist only those fields.

        Args:
            job: The job to update.
            **fields: Model fields to change.

        Returns:
            The updated job.
        """
        updated, changed = self.changes(job, **fields)
        await self._store.hash_set(self.key(job.id), changed)
        return updated

    @staticmethod
    def changes(job: Job, **fields: Any) -> tuple[Job, dict[str, str]]:
        """Return the updated job and the record entries that changed."""
        updated = job.model_copy(update=fields)
        record = updated.to_record()
        names = {"job_class": "class"}
        return updated, {names.get(f, f): record[names.get(f, f)] for f in fields}

    async def get(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Returns:
            The Job or None if not found or expired.
        """
        record = await self._store.hash_get_all(self.key(job_id))
        if not record or "id" not in record:
            return None
        return Job.from_record(record)

    async def expire(self, job_id: str, seconds: int) -> None:
        await self._store.expire(self.key(job_id), seconds)

    async def delete(self, job_id: str) -> int:
        return await self._store.delete(self.key(job_id))

"""
Job-related type definitions.
"""

import hashlib
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from jobhive.constants import JobStatus
from jobhive.exceptions import InvalidJob


def _encode(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _decode_float(value: str | None) -> float | None:
    return float(value) if value else None


def _decode_int(value: str | None) -> int | None:
    return int(value) if value else None


class Job(BaseModel):
    """
    Persisted job record.

    Stored as a Redis hash; every field is written as a string and empty
    strings stand for unset values.
    """

    id: str
    queue: str
    job_class: str
    args: list[Any] = Field(default_factory=list)
    status: JobStatus = JobStatus.QUEUED
    created: float = Field(default_factory=time.time)
    delayed: float | None = None
    started: float | None = None
    finished: float | None = None
    worker: str | None = None
    pid: int | None = None
    attempts: int = 0
    error: str | None = None
    result: Any = None

    @classmethod
    def create(cls, queue: str, job_class: str, args: list[Any] | None = None) -> "Job":
        """
        Build a new job, validating the executable reference and arguments.

        Raises:
            InvalidJob: If the class is empty or the args are not a
                JSON-serializable list.
        """
        if not isinstance(queue, str) or not queue.strip():
            raise InvalidJob("Queue name must be a non-empty string")
        if not isinstance(job_class, str) or not job_class.strip():
            raise InvalidJob("Job class must be a non-empty string")
        if args is None:
            args = []
        if not isinstance(args, (list, tuple)):
            raise InvalidJob(f"Job args must be a list, got {type(args).__name__}")
        try:
            encoded = json.dumps({"class": job_class, "args": list(args)}, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise InvalidJob(f"Job args are not serializable: {e}") from e

        nonce = uuid.uuid4().hex
        job_id = hashlib.sha256(f"{encoded}{nonce}".encode()).hexdigest()[:32]
        return cls(id=job_id, queue=queue.strip(), job_class=job_class.strip(), args=list(args))

    def to_record(self) -> dict[str, str]:
        """Serialize to a flat string mapping for the store."""
        return {
            "id": self.id,
            "queue": self.queue,
            "class": self.job_class,
            "args": json.dumps(self.args),
            "status": self.status.value,
            "created": _encode(self.created),
            "delayed": _encode(self.delayed),
            "started": _encode(self.started),
            "finished": _encode(self.finished),
            "worker": _encode(self.worker),
            "pid": _encode(self.pid),
            "attempts": str(self.attempts),
            "error": _encode(self.error),
            "result": "" if self.result is None else json.dumps(self.result),
        }

    @classmethod
    def from_record(cls, record: dict[str, str]) -> "Job":
        """Rebuild a job from its stored mapping."""
        return cls(
            id=record["id"],
            queue=record["queue"],
            job_class=record["class"],
            args=json.loads(record.get("args") or "[]"),
            status=JobStatus(record.get("status") or JobStatus.QUEUED),
            created=_decode_float(record.get("created")) or 0.0,
            delayed=_decode_float(record.get("delayed")),
            started=_decode_float(record.get("started")),
            finished=_decode_float(record.get("finished")),
            worker=record.get("worker") or None,
            pid=_decode_int(record.get("pid")),
            attempts=int(record.get("attempts") or 0),
            error=record.get("error") or None,
            result=json.loads(record["result"]) if record.get("result") else None,
        )

    def __str__(self) -> str:
        return self.id


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: Any = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.

    Built by the worker and handed to the child process, so every field
    must be picklable.
    """

    job_id: str
    queue: str
    job_class: str
    args: list[Any]
    attempt: int
    worker_id: str

    @property
    def is_retry(self) -> bool:
        """Check if this job was claimed before."""
        return self.attempt > 1

    @classmethod
    def from_job(cls, job: Job, worker_id: str) -> "JobContext":
        return cls(
            job_id=job.id,
            queue=job.queue,
            job_class=job.job_class,
            args=list(job.args),
            attempt=job.attempts,
            worker_id=worker_id,
        )

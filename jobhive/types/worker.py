"""
Worker status record definitions.
"""

import json
import time

from pydantic import BaseModel, Field

from jobhive.constants import WorkerStatus


class WorkerPacket(BaseModel):
    """
    Heartbeat and status record published by a worker.

    Read by the host cleanup and by the control server's ``workers``
    listing. Writes are last-writer-wins per field.
    """

    id: str
    hostname: str
    pid: int
    status: WorkerStatus = WorkerStatus.STARTING
    queues: list[str] = Field(default_factory=list)
    interval: float = 5.0
    timeout: float = 60.0
    memory_limit: int = 128
    processed: int = 0
    cancelled: int = 0
    failed: int = 0
    started: float = Field(default_factory=time.time)
    heartbeat: float = Field(default_factory=time.time)
    job_id: str | None = None
    job_pid: int | None = None
    job_started: float | None = None
    memory: int = 0

    def to_record(self) -> dict[str, str]:
        """Serialize to a flat string mapping for the store."""
        record = self.model_dump(mode="json")
        record["queues"] = json.dumps(self.queues)
        return {k: "" if v is None else str(v) for k, v in record.items()}

    @classmethod
    def from_record(cls, record: dict[str, str]) -> "WorkerPacket":
        """Rebuild a packet from its stored mapping; blanks become None."""
        data: dict = {k: v for k, v in record.items() if v != ""}
        data["queues"] = json.loads(record.get("queues") or "[]")
        return cls.model_validate(data)

    @property
    def age(self) -> float:
        """Seconds since the last heartbeat."""
        return max(0.0, time.time() - self.heartbeat)


def parse_worker_id(worker_id: str) -> tuple[str, int]:
    """
    Split a ``<hostname>:<pid>`` worker id.

    Raises:
        ValueError: If the id is malformed.
    """
    hostname, sep, pid = worker_id.rpartition(":")
    if not sep or not hostname or not pid.isdigit():
        raise ValueError(f"Malformed worker id: {worker_id!r}")
    return hostname, int(pid)

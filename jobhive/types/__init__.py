"""
Type definitions for the job queue.
Contains record and message types, grouped by module.
"""

from jobhive.types.control import CommandRequest, CommandResult
from jobhive.types.job import Job, JobContext, JobResult
from jobhive.types.worker import WorkerPacket, parse_worker_id

__all__ = [
    # Job types
    "Job",
    "JobContext",
    "JobResult",
    # Worker types
    "WorkerPacket",
    "parse_worker_id",
    # Control types
    "CommandRequest",
    "CommandResult",
]

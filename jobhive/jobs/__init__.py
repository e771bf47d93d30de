"""
Jobs module.
Contains the job repository, the queue client and producer-side parsing.
"""

from jobhive.jobs.args import parse_args, parse_delay
from jobhive.jobs.queue import Queue, resolve_due_time
from jobhive.jobs.repository import JobRepository

__all__ = [
    "Queue",
    "JobRepository",
    "resolve_due_time",
    "parse_args",
    "parse_delay",
]

"""
Worker module.
Contains the worker loop, the per-job child process executor, host
bookkeeping and the job handler registry.
"""

from jobhive.worker.executor import JobExecutor
from jobhive.worker.handlers import execute_job, get_handler, list_handlers, register_handler
from jobhive.worker.host import Host, process_alive
from jobhive.worker.main import Worker, run

__all__ = [
    "Host",
    "JobExecutor",
    "Worker",
    "execute_job",
    "get_handler",
    "list_handlers",
    "process_alive",
    "register_handler",
    "run",
]

"""
Application constants.
Centralized location for all constant values used across the application.
"""

import signal
from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - DELAYED -> QUEUED (due time elapsed, promoted)
    - QUEUED -> RUNNING (claimed by a worker)
    - RUNNING -> COMPLETE (success)
    - RUNNING -> FAILED (error, timeout, memory, cancel or zombie)
    """

    QUEUED = "queued"
    DELAYED = "delayed"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class WorkerStatus(StrEnum):
    """
    Worker lifecycle states.

    State transitions:
    - STARTING -> IDLE (registered with host)
    - IDLE -> RUNNING (job dequeued)
    - RUNNING -> IDLE (job finished)
    - IDLE/RUNNING -> PAUSED (pause action, running job finishes first)
    - PAUSED -> IDLE (resume action)
    - RUNNING -> CANCELLING -> IDLE (cancel action)
    - any -> SHUTTING_DOWN -> TERMINATED (stop actions)
    """

    STARTING = "starting"
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLING = "cancelling"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class WorkerAction(StrEnum):
    """Remote actions a worker understands."""

    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    FORCE_STOP = "force_stop"
    CANCEL = "cancel"


# The only place OS signal numbers are tied to worker actions
ACTION_SIGNALS: dict[WorkerAction, signal.Signals] = {
    WorkerAction.PAUSE: signal.SIGUSR2,
    WorkerAction.RESUME: signal.SIGCONT,
    WorkerAction.STOP: signal.SIGQUIT,
    WorkerAction.FORCE_STOP: signal.SIGTERM,
    WorkerAction.CANCEL: signal.SIGUSR1,
}

# Extra signals a worker maps onto an action
EXTRA_ACTION_SIGNALS: dict[signal.Signals, WorkerAction] = {
    signal.SIGINT: WorkerAction.FORCE_STOP,
}

# Failure reasons recorded on job records
REASON_CANCELLED = "cancelled"
REASON_TIMEOUT = "timeout"
REASON_MEMORY = "memory"
REASON_ZOMBIE = "zombie"

# Default values
DEFAULT_EXPIRY_TIME = 604800  # one week
DEFAULT_QUEUE = "default"
DEFAULT_CONTROL_PORT = 7777

# Store key names (relative to the namespace)
KEY_QUEUES = "queues"
KEY_QUEUE = "queue:{name}"
KEY_DELAYED = "delayed"
KEY_RUNNING = "running"
KEY_PROCESSED = "processed"
KEY_CLAIMED = "claimed:{queue}:{worker}"
KEY_STATS = "stats"
KEY_JOB = "job:{id}"
KEY_WORKER = "worker:{id}"
KEY_HOSTS = "hosts"
KEY_HOST = "host:{hostname}"

# Metrics names
METRIC_JOBS_ENQUEUED = "jobhive_jobs_enqueued_total"
METRIC_JOBS_COMPLETED = "jobhive_jobs_completed_total"
METRIC_JOB_DURATION = "jobhive_job_duration_seconds"
METRIC_JOBS_PROMOTED = "jobhive_delayed_jobs_promoted_total"
METRIC_ZOMBIES = "jobhive_zombie_jobs_total"
METRIC_QUEUE_DEPTH = "jobhive_queue_depth"
METRIC_CONTROL_COMMANDS = "jobhive_control_commands_total"

# Trace span names
SPAN_EXECUTE_JOB = "execute_job"
SPAN_PROMOTE_DUE = "promote_due"
SPAN_CLEANUP = "cleanup"
SPAN_CONTROL_COMMAND = "control_command"

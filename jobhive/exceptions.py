"""Exceptions raised across the job queue."""


class JobHiveError(Exception):
    """Base exception for all jobhive errors"""

    pass


class InvalidJob(JobHiveError):
    """Raised when a job payload is malformed and cannot be queued"""

    pass


class StoreUnavailable(JobHiveError):
    """Raised when the backing store cannot be reached; callers retry"""

    pass


class StoreConflict(JobHiveError):
    """Raised when a watched key changed before a transaction could commit"""

    pass


class WorkerNotFound(JobHiveError):
    """Raised when a control command targets an unknown worker"""

    pass


class JobExecutionFailure(JobHiveError):
    """Raised inside the worker when a job ends without success"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class JobTimeout(JobExecutionFailure):
    """Raised when a job runs longer than the worker timeout"""

    pass


class JobMemoryExceeded(JobExecutionFailure):
    """Raised when a job process grows past the memory ceiling"""

    pass


class SocketBindFailure(JobHiveError):
    """Raised when the control server cannot bind its address"""

    pass


class ProtocolParseError(JobHiveError):
    """Raised when a control request line cannot be parsed"""

    pass

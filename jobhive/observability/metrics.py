"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from jobhive.constants import (
    METRIC_CONTROL_COMMANDS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_PROMOTED,
    METRIC_QUEUE_DEPTH,
    METRIC_ZOMBIES,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Job enqueues and completions
    - Job execution duration
    - Delayed job promotion and zombie reclamation
    - Queue depth
    - Control server commands
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["queue", "delayed"],
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of jobs finished by workers",
            ["queue", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.jobs_promoted = Counter(
            METRIC_JOBS_PROMOTED,
            "Total number of delayed jobs moved to a ready queue",
            registry=self._registry,
        )

        self.zombies = Counter(
            METRIC_ZOMBIES,
            "Total number of running jobs reclaimed from dead workers",
            registry=self._registry,
        )

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs in a ready queue",
            ["queue"],
            registry=self._registry,
        )

        self.control_commands = Counter(
            METRIC_CONTROL_COMMANDS,
            "Total number of control server commands handled",
            ["command", "ok"],
            registry=self._registry,
        )

    def record_job_enqueued(self, queue: str, delayed: bool = False) -> None:
        """Record a job enqueue."""
        self.jobs_enqueued.labels(queue=queue, delayed=str(delayed).lower()).inc()

    def record_job_completed(
        self,
        queue: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a job completion."""
        self.jobs_completed.labels(queue=queue, status=status).inc()
        self.job_duration.labels(queue=queue, status=status).observe(duration_seconds)

    def record_promoted(self, count: int) -> None:
        if count:
            self.jobs_promoted.inc(count)

    def record_zombies(self, count: int) -> None:
        if count:
            self.zombies.inc(count)

    def update_queue_depth(self, queue: str, depth: int) -> None:
        """Update queue depth for a queue."""
        self.queue_depth.labels(queue=queue).set(depth)

    def record_control_command(self, command: str, ok: bool) -> None:
        self.control_commands.labels(command=command, ok=str(int(ok))).inc()

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def serve(self, port: int) -> None:
        """Expose the registry over HTTP on the given port."""
        start_http_server(port, registry=self._registry)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics

"""
Unit tests for job handlers.
"""

import pytest

from jobhive.types.job import JobContext, JobResult
from jobhive.worker.handlers import (
    execute_job,
    get_handler,
    handle_echo,
    handle_failing_job,
    list_handlers,
    register_handler,
)


def plain_callable(context: JobContext) -> dict:
    """Importable handler returning a bare value."""
    return {"args": context.args}


class TestJobHandlers:
    """Tests for job handlers."""

    @pytest.fixture
    def job_context(self) -> JobContext:
        """Create a test job context."""
        return JobContext(
            job_id="0123456789abcdef0123456789abcdef",
            queue="default",
            job_class="echo",
            args=["test", 1],
            attempt=1,
            worker_id="test-host:1",
        )

    def test_list_handlers(self):
        """Test listing registered handlers."""
        handlers = list_handlers()

        assert "echo" in handlers
        assert "sleep" in handlers
        assert "failing_job" in handlers

    def test_get_handler_exists(self):
        """Test getting an existing handler."""
        handler = get_handler("echo")
        assert handler is not None
        assert handler == handle_echo

    def test_get_handler_not_exists(self):
        """Test getting a non-existent handler."""
        assert get_handler("nonexistent") is None
        assert get_handler("no.such.module:func") is None

    def test_get_handler_by_import_path(self):
        assert get_handler("tests.unit.test_handlers:plain_callable") is plain_callable

    def test_register_handler(self):
        @register_handler("test_registered")
        async def handler(context: JobContext) -> JobResult:
            return JobResult(success=True)

        assert get_handler("test_registered") is handler

    async def test_echo_handler(self, job_context: JobContext):
        """Test the echo handler."""
        result = await handle_echo(job_context)

        assert result.success is True
        assert result.output == {"echo": ["test", 1]}

    async def test_failing_handler(self, job_context: JobContext):
        """Test the failing job handler."""
        result = await handle_failing_job(job_context)

        assert result.success is False
        assert "Intentional failure" in result.error

    async def test_execute_job_with_valid_class(self, job_context: JobContext):
        """Test execute_job with a registered job class."""
        result = await execute_job(job_context)

        assert result.success is True
        assert result.duration_ms is not None

    async def test_execute_job_with_invalid_class(self, job_context: JobContext):
        """Test execute_job with an unknown job class."""
        job_context.job_class = "nonexistent_handler"

        result = await execute_job(job_context)

        assert result.success is False
        assert "No handler registered" in result.error

    async def test_execute_job_captures_exceptions(self, job_context: JobContext):
        job_context.job_class = "raise_error"
        job_context.args = ["boom"]

        result = await execute_job(job_context)

        assert result.success is False
        assert result.error == "Handler exception: boom"

    async def test_execute_job_wraps_plain_return_values(self, job_context: JobContext):
        job_context.job_class = "tests.unit.test_handlers:plain_callable"

        result = await execute_job(job_context)

        assert result.success is True
        assert result.output == {"args": ["test", 1]}

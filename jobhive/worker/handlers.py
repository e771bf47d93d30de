"""
Job handlers registry and implementations.

Job handlers must be idempotent - they may be executed more than once for
the same job when a worker dies mid-job and the job is queued again.

A job's class is either the name of a registered handler or an import
path of the form ``package.module:callable``.
"""

import asyncio
import importlib
import inspect
import logging
import os
import time
from typing import Any, Awaitable, Callable

from jobhive.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(job_class: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        job_class: The job class name this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("Send")
        async def handle_send(context: JobContext) -> JobResult:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[job_class] = handler
        logger.debug(f"Registered handler for job class: {job_class}")
        return handler
    return decorator


def get_handler(job_class: str) -> JobHandler | None:
    """
    Resolve the handler for a job class.

    Registered names win; otherwise ``module:callable`` is imported.

    Returns:
        The handler function or None if it cannot be resolved.
    """
    handler = _handlers.get(job_class)
    if handler is not None:
        return handler

    module_name, sep, attr = job_class.partition(":")
    if not sep or not module_name or not attr:
        return None
    try:
        module = importlib.import_module(module_name)
    except ImportError:
        return None
    target = getattr(module, attr, None)
    return target if callable(target) else None


def list_handlers() -> list[str]:
    """List all registered job classes."""
    return list(_handlers.keys())


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
async def handle_echo(context: JobContext) -> JobResult:
    """
    Echo handler for testing.

    Simply returns the job arguments as output.
    """
    logger.info("Echo job executing", extra={"job_id": context.job_id})

    return JobResult(success=True, output={"echo": context.args})


@register_handler("sleep")
async def handle_sleep(context: JobContext) -> JobResult:
    """
    Sleep handler for testing delays, timeouts and cancellation.

    Args: ``[duration_seconds]``
    """
    duration = float(context.args[0]) if context.args else 1.0

    await asyncio.sleep(duration)

    return JobResult(success=True, output={"slept_for": duration})


@register_handler("failing_job")
async def handle_failing_job(context: JobContext) -> JobResult:
    """
    Handler that always fails - for testing failure handling.
    """
    return JobResult(
        success=False,
        error=f"Intentional failure on attempt {context.attempt}",
    )


@register_handler("raise_error")
async def handle_raise_error(context: JobContext) -> JobResult:
    """Handler that raises, with the first argument as the message."""
    message = str(context.args[0]) if context.args else "Job raised an error"
    raise RuntimeError(message)


@register_handler("crash")
async def handle_crash(context: JobContext) -> JobResult:
    """Handler that kills its own process without reporting a result."""
    code = int(context.args[0]) if context.args else 3
    os._exit(code)


@register_handler("allocate")
async def handle_allocate(context: JobContext) -> JobResult:
    """
    Handler that holds memory - for testing the memory ceiling.

    Args: ``[megabytes, hold_seconds]``
    """
    megabytes = int(context.args[0]) if context.args else 64
    hold = float(context.args[1]) if len(context.args) > 1 else 5.0

    block = bytearray(megabytes * 1024 * 1024)
    # touch every page so the RSS actually grows
    for i in range(0, len(block), 4096):
        block[i] = 1
    await asyncio.sleep(hold)

    return JobResult(success=True, output={"allocated_mb": megabytes})


async def execute_job(context: JobContext) -> JobResult:
    """
    Execute a job using the appropriate handler.

    Handler exceptions are captured into a failed JobResult.

    Args:
        context: The job context.

    Returns:
        JobResult from the handler.
    """
    handler = get_handler(context.job_class)

    if handler is None:
        logger.error(
            f"No handler for job class: {context.job_class}",
            extra={"job_id": context.job_id}
        )
        return JobResult(
            success=False,
            error=f"No handler registered for job class: {context.job_class}",
        )

    start = time.monotonic()
    try:
        result: Any = handler(context)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": context.job_id, "error": str(e)}
        )
        return JobResult(
            success=False,
            error=f"Handler exception: {str(e)}",
        )

    if not isinstance(result, JobResult):
        result = JobResult(success=True, output=result)
    result.duration_ms = (time.monotonic() - start) * 1000
    return result

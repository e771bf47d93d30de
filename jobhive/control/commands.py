"""
Control command table.

Every command is a coroutine registered under one or more names. A
handler receives the session's ``CommandContext`` and the parsed request
and always returns a ``CommandResult``; the dispatcher turns anything a
handler raises into a failed result.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from jobhive.constants import ACTION_SIGNALS, SPAN_CONTROL_COMMAND, WorkerAction
from jobhive.control.protocol import format_bytes, human_time_diff, sanitize_worker_id
from jobhive.exceptions import WorkerNotFound
from jobhive.jobs.queue import Queue
from jobhive.observability.metrics import MetricsCollector, get_metrics
from jobhive.observability.tracing import get_tracer
from jobhive.types.control import CommandRequest, CommandResult
from jobhive.types.worker import WorkerPacket
from jobhive.worker.host import Host, process_alive

logger = logging.getLogger(__name__)

SignalSender = Callable[[int, int], None]
CommandHandler = Callable[["CommandContext", CommandRequest], Awaitable[CommandResult]]

WORKER_HEADERS = [
    "#",
    "Status",
    "ID",
    "Running for",
    "Running job",
    "P",
    "C",
    "F",
    "Interval",
    "Timeout",
    "Memory (Limit)",
]

INVALID_WORKER_ID = 'Invalid worker id. To get a list of workers use the "workers" command.'
NO_WORKERS = "There are no workers on this host."
SIGNAL_ERROR = "There was an error sending the signal, please try again."

# Registry of command handlers
_COMMANDS: dict[str, CommandHandler] = {}


@dataclass
class CommandContext:
    """What a command handler may touch."""

    queue: Queue
    host: Host
    address: str = ""
    send_signal: SignalSender = os.kill
    timeout: float = 30.0
    metrics: MetricsCollector = field(default_factory=get_metrics)


def register_command(*names: str) -> Callable[[CommandHandler], CommandHandler]:
    """
    Decorator to register a command handler under one or more names.

    Usage:
        @register_command("workers")
        async def workers(ctx: CommandContext, request: CommandRequest) -> CommandResult:
            ...
    """

    def decorator(func: CommandHandler) -> CommandHandler:
        for name in names:
            _COMMANDS[name] = func
        return func

    return decorator


def get_command(name: str) -> CommandHandler | None:
    return _COMMANDS.get(name)


def list_commands() -> list[str]:
    return sorted(_COMMANDS.keys())


async def dispatch(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    """
    Run one request through the command table.

    Never raises: unknown commands, handler errors and timeouts all come
    back as ``ok=False`` results.
    """
    handler = get_command(request.cmd)
    if handler is None:
        result = CommandResult(
            ok=False,
            message=f'Sorry, I don\'t know what to do with command "{request.cmd}".',
        )
        ctx.metrics.record_control_command("unknown", result.ok)
        return result

    with get_tracer().start_as_current_span(SPAN_CONTROL_COMMAND) as span:
        span.set_attribute("command", request.cmd)
        try:
            result = await asyncio.wait_for(handler(ctx, request), timeout=ctx.timeout)
        except asyncio.TimeoutError:
            logger.error("Control command timed out", extra={"command": request.cmd})
            result = CommandResult(ok=False, message=f'Command "{request.cmd}" timed out.')
        except Exception as e:
            logger.exception("Control command failed", extra={"command": request.cmd})
            result = CommandResult(ok=False, message=f"Command error: {e}")
        span.set_attribute("ok", result.ok)

    ctx.metrics.record_control_command(request.cmd, result.ok)
    return result


# ----------------------------------------------------------------------
# Session commands
# ----------------------------------------------------------------------


@register_command("shell")
async def shell(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    return CommandResult(
        ok=True,
        message=f'Connected to jobhive on {ctx.address}. To quit, type "quit"',
    )


@register_command("quit", "exit")
async def quit_session(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    return CommandResult(ok=True, close=True)


@register_command("shutdown")
async def shutdown(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    logger.info("Control server shutdown requested")
    return CommandResult(ok=True, shutdown=True)


# ----------------------------------------------------------------------
# Workers
# ----------------------------------------------------------------------


def _worker_row(index: int, packet: WorkerPacket) -> list[str]:
    return [
        str(index),
        packet.status.value,
        packet.id,
        human_time_diff(packet.started),
        f"{packet.job_id} for {human_time_diff(packet.job_started)}" if packet.job_id else "-",
        str(packet.processed),
        str(packet.cancelled),
        str(packet.failed),
        f"{packet.interval:g}s",
        f"{packet.timeout:g}s",
        f"{format_bytes(packet.memory)} ({packet.memory_limit} MB)",
    ]


@register_command("workers")
async def workers(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    packets = await ctx.host.workers()
    if not packets:
        return CommandResult(ok=False, message="There are no workers running on this host.")

    return CommandResult(
        ok=True,
        data=[packet.model_dump(mode="json") for packet in packets],
        headers=WORKER_HEADERS,
        rows=[_worker_row(i, packet) for i, packet in enumerate(packets, start=1)],
    )


async def resolve_targets(ctx: CommandContext, raw_id: str | None) -> list[WorkerPacket]:
    """
    Resolve the workers a command applies to.

    No id means every worker on this host.

    Raises:
        WorkerNotFound: If an id was given and nothing matched.
    """
    pattern = sanitize_worker_id(raw_id)
    if not pattern:
        return await ctx.host.workers()

    matched = await ctx.host.lookup(pattern)
    if not matched:
        raise WorkerNotFound(pattern)
    return matched


def _signal(ctx: CommandContext, pid: int, action: WorkerAction) -> bool:
    try:
        ctx.send_signal(pid, ACTION_SIGNALS[action])
    except OSError as e:
        logger.warning(
            "Failed to signal worker",
            extra={"pid": pid, "action": action.value, "error": str(e)},
        )
        return False
    return True


_ACTION_MESSAGES = {
    WorkerAction.PAUSE: "Paused worker {id}",
    WorkerAction.RESUME: "Resumed worker {id}",
    WorkerAction.STOP: "Stopped worker {id}",
    WorkerAction.FORCE_STOP: "Force stopped worker {id}",
    WorkerAction.CANCEL: "Cancelled running job on worker {id}",
}


async def _worker_action(
    ctx: CommandContext, request: CommandRequest, action: WorkerAction
) -> CommandResult:
    try:
        targets = await resolve_targets(ctx, request.id)
    except WorkerNotFound:
        return CommandResult(ok=False, message=INVALID_WORKER_ID)

    if not targets:
        return CommandResult(ok=False, message=NO_WORKERS)

    entries = []
    for packet in targets:
        if action == WorkerAction.CANCEL and not (packet.job_pid and process_alive(packet.job_pid)):
            entries.append(
                {"ok": 0, "message": f"The worker {packet.id} has no running job to cancel."}
            )
            continue

        if _signal(ctx, packet.pid, action):
            entries.append({"ok": 1, "message": _ACTION_MESSAGES[action].format(id=packet.id)})
        else:
            entries.append({"ok": 0, "message": SIGNAL_ERROR})

    logger.info(
        "Worker action sent",
        extra={"action": action.value, "workers": [p.id for p in targets]},
    )
    return CommandResult(
        ok=any(entry["ok"] for entry in entries),
        message="\n".join(entry["message"] for entry in entries),
        data=entries,
    )


@register_command("worker:pause")
async def worker_pause(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    return await _worker_action(ctx, request, WorkerAction.PAUSE)


@register_command("worker:resume")
async def worker_resume(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    return await _worker_action(ctx, request, WorkerAction.RESUME)


@register_command("worker:stop")
async def worker_stop(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    action = WorkerAction.FORCE_STOP if request.force else WorkerAction.STOP
    return await _worker_action(ctx, request, action)


@register_command("worker:cancel")
async def worker_cancel(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    return await _worker_action(ctx, request, WorkerAction.CANCEL)


@register_command("worker:start", "worker:restart")
async def worker_start(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    return CommandResult(ok=False, message="This command is not supported remotely.")


# ----------------------------------------------------------------------
# Jobs and maintenance
# ----------------------------------------------------------------------


@register_command("job:queue")
async def job_queue(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    return CommandResult(
        ok=False,
        message="Cannot queue jobs remotely. Enqueue them from a producer with the queue client.",
    )


@register_command("cleanup")
async def cleanup(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    cleaned = await ctx.host.cleanup()
    jobs = await ctx.queue.cleanup(ctx.host)

    lines = [
        f"Cleaned hosts: {cleaned['hosts']}",
        f"Cleaned workers: {cleaned['workers']}",
        f"Requeued {jobs['requeued']} job(s) of dead workers",
        f"Cleaned {jobs['zombie']} zombie job(s)",
        f"Cleared {jobs['processed']} processed job(s)",
    ]
    return CommandResult(ok=True, message="\n".join(lines), data={**cleaned, **jobs})


@register_command("stats")
async def stats(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    counters = await ctx.queue.stats()
    return CommandResult(
        ok=True,
        data=counters,
        headers=["Stat", "Count"],
        rows=[[name, str(count)] for name, count in counters.items()],
    )


@register_command("clear")
async def clear(ctx: CommandContext, request: CommandRequest) -> CommandResult:
    if not request.force:
        return CommandResult(
            ok=False,
            message="Continuing will clear all jobhive data from the store. Run \"clear --force\" to confirm.",
        )
    deleted = await ctx.queue.clear()
    return CommandResult(ok=True, message=f"Cleared {deleted} key(s).", data={"keys": deleted})

"""
Control protocol parsing and rendering.

A request is one line: either a JSON object with a ``cmd`` key, or a
shell-style line ``<cmd> [id] [--force|-f] [--json|-j]``. A response is
either a JSON body ``{"ok": 0|1, "message"?, "data"?}`` or human text.
"""

import json
import re
import shlex
import time
from io import StringIO

from rich.console import Console
from rich.table import Table

from jobhive.exceptions import ProtocolParseError
from jobhive.types.control import CommandRequest, CommandResult

_FLAGS = {
    "--force": "force",
    "-f": "force",
    "--json": "json",
    "-j": "json",
}

_WORKER_ID_RE = re.compile(r"[^A-Za-z0-9*?:,.;_-]")

# Accepted spellings of JSON request flags
_TRUE_WORDS = {"true", "1", "yes", "on"}
_FALSE_WORDS = {"false", "0", "no", "off", ""}


def _json_flag(decoded: dict, name: str) -> bool:
    value = decoded.get(name, False)
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in _TRUE_WORDS | _FALSE_WORDS:
        return value.strip().lower() in _TRUE_WORDS
    raise ProtocolParseError(f'The "{name}" option must be a boolean, got {json.dumps(value)}.')


def parse_request(line: str) -> CommandRequest:
    """
    Parse one request line.

    Raises:
        ProtocolParseError: If the line is empty, malformed, or carries
            unknown options or extra arguments.
    """
    line = line.strip()
    if not line:
        raise ProtocolParseError("Empty command")

    try:
        decoded = json.loads(line)
    except ValueError:
        decoded = None

    if isinstance(decoded, dict):
        cmd = decoded.get("cmd")
        if not isinstance(cmd, str) or not cmd.strip():
            raise ProtocolParseError('JSON request needs a "cmd" string')
        raw_id = decoded.get("id")
        return CommandRequest(
            cmd=cmd.strip().lower(),
            id=None if raw_id is None else str(raw_id),
            force=_json_flag(decoded, "force"),
            json=_json_flag(decoded, "json"),
        )

    try:
        tokens = shlex.split(line)
    except ValueError as e:
        raise ProtocolParseError(str(e)) from e

    options = {"force": False, "json": False}
    positional: list[str] = []
    for token in tokens:
        if token.startswith("-"):
            if token not in _FLAGS:
                raise ProtocolParseError(f'The "{token}" option does not exist.')
            options[_FLAGS[token]] = True
        else:
            positional.append(token)

    if not positional:
        raise ProtocolParseError("Not enough arguments (missing: \"cmd\").")
    if len(positional) > 2:
        raise ProtocolParseError(f'Too many arguments, expected "cmd [id]", got "{line}".')

    return CommandRequest(
        cmd=positional[0].lower(),
        id=positional[1] if len(positional) > 1 else None,
        force=options["force"],
        json=options["json"],
    )


def sanitize_worker_id(raw: str | None) -> str:
    """Strip everything that cannot appear in a worker id or pattern."""
    if not raw:
        return ""
    return _WORKER_ID_RE.sub("", raw)


def render(result: CommandResult, as_json: bool) -> str:
    """Render a command result for the wire."""
    if as_json:
        return json.dumps(result.to_wire())
    if result.rows is not None:
        return render_table(result.headers or [], result.rows)
    if result.message is not None:
        return result.message
    return ""


def render_table(headers: list[str], rows: list[list[str]]) -> str:
    table = Table(show_header=True, header_style="bold")
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*row)

    output = StringIO()
    console = Console(file=output, width=160, color_system=None, force_terminal=False)
    console.print(table)
    return output.getvalue().rstrip("\n")


def human_time_diff(since: float | None, now: float | None = None) -> str:
    """Approximate elapsed time, e.g. ``3 mins`` or ``2 hours``."""
    if not since:
        return "-"
    now = time.time() if now is None else now
    diff = max(0, int(now - since))

    for size, unit in ((86400, "day"), (3600, "hour"), (60, "min")):
        if diff >= size:
            count = diff // size
            return f"{count} {unit}{'' if count == 1 else 's'}"
    return f"{diff} sec{'' if diff == 1 else 's'}"


def format_bytes(size: int | float) -> str:
    """Human readable byte count."""
    size = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} GB"

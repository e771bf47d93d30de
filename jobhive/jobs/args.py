"""
Producer-boundary input normalization.

Command lines and other untyped producers hand over strings; these
helpers turn them into typed job arguments and delays once, so the queue
itself never guesses types.
"""

import json
import re
import time
from datetime import datetime, timedelta
from typing import Any

from jobhive.exceptions import InvalidJob

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")


def coerce_scalar(value: str) -> int | float | str:
    """Convert an integer- or float-looking string, leave anything else alone."""
    value = value.strip()
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    return value


def parse_args(text: str | None) -> list[Any]:
    """
    Parse a job argument string.

    A JSON array is used as-is and a JSON object becomes a single argument.
    Anything else is split on commas with numeric coercion per item.

    Examples:
        >>> parse_args('["a@b.com", 3]')
        ['a@b.com', 3]
        >>> parse_args("a@b.com,3,1.5")
        ['a@b.com', 3, 1.5]
    """
    if text is None or not text.strip():
        return []

    try:
        decoded = json.loads(text)
    except ValueError:
        decoded = None

    if isinstance(decoded, list):
        return decoded
    if isinstance(decoded, dict):
        return [decoded]

    return [coerce_scalar(part) for part in text.split(",")]


def parse_delay(value: Any, default: float = 0) -> float | timedelta | datetime:
    """
    Normalize a producer-supplied delay.

    Integers (or integer strings) smaller than the current unix time are
    durations in seconds; larger ones are absolute unix timestamps. A
    missing value means the default delay.

    Raises:
        InvalidJob: If the value is not a whole number, duration or datetime.
    """
    if value is None or value == "":
        return default
    if isinstance(value, (timedelta, datetime)):
        return value
    if isinstance(value, bool):
        raise InvalidJob(f'Delay option "{value}" is invalid, value must be an integer')
    if isinstance(value, str):
        if not _INT_RE.match(value.strip()):
            raise InvalidJob(f'Delay option "{value}" is invalid, value must be an integer')
        value = int(value.strip())
    if not isinstance(value, (int, float)):
        raise InvalidJob(f"Delay of type {type(value).__name__} is not supported")

    if value > time.time():
        return datetime.fromtimestamp(value)
    return value

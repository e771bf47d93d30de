"""
Control server module.
Line protocol, command table and TCP server for operating workers remotely.
"""

from jobhive.control.commands import CommandContext, dispatch, list_commands, register_command
from jobhive.control.protocol import parse_request, render, sanitize_worker_id
from jobhive.control.server import ControlServer

__all__ = [
    "CommandContext",
    "ControlServer",
    "dispatch",
    "list_commands",
    "parse_request",
    "register_command",
    "render",
    "sanitize_worker_id",
]

"""
Control protocol request and response definitions.
"""

from typing import Any

from pydantic import BaseModel, Field


class CommandRequest(BaseModel):
    """One parsed request line from a control session."""

    cmd: str
    id: str | None = None
    force: bool = False
    json_output: bool = Field(default=False, alias="json")

    model_config = {"populate_by_name": True}


class CommandResult(BaseModel):
    """
    Structured result returned by every command handler.

    ``rows``/``headers`` carry an optional table for human rendering and
    ``close``/``shutdown`` tell the session what to do next; none of them
    are part of the JSON body.
    """

    ok: bool
    message: str | None = None
    data: Any = None
    headers: list[str] | None = None
    rows: list[list[str]] | None = None
    close: bool = False
    shutdown: bool = False

    def to_wire(self) -> dict[str, Any]:
        """Build the JSON response body ``{ok, message?, data?}``."""
        body: dict[str, Any] = {"ok": int(self.ok)}
        if self.message is not None:
            body["message"] = self.message
        if self.data is not None:
            body["data"] = self.data
        return body

"""Event layer: immutable stream events fanned out to SSE clients."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EventName = Literal["output", "state", "error", "info", "tool_use", "file_changes"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class FileChange(BaseModel):
    """One changed file, reported either by a tool call or by version control."""

    model_config = ConfigDict(frozen=True)

    path: str
    status: str | None = None
    diff: str | None = None
    tool: str | None = None
    operation: str | None = None
    timestamp: str | None = None


class StreamEvent(BaseModel):
    """Single discrete unit sent to streaming clients."""

    model_config = ConfigDict(frozen=True)

    event: EventName
    content: str | None = None
    state: str | None = None
    tool_name: str | None = None
    parameters: dict[str, Any] | None = None
    changes: tuple[FileChange, ...] | None = None
    at: str = Field(default_factory=utc_now_iso)

    def wire_payload(self) -> dict[str, Any]:
        """JSON object carried in the SSE `data:` field."""
        payload: dict[str, Any] = {"type": self.event}
        if self.event == "tool_use":
            payload["content"] = json.dumps(
                {"tool": self.tool_name, "input": self.parameters or {}},
                ensure_ascii=False,
            )
        elif self.event == "file_changes":
            changes = [item.model_dump(mode="json", exclude_none=True) for item in self.changes or ()]
            payload["content"] = json.dumps(changes, ensure_ascii=False)
        elif self.content is not None:
            payload["content"] = self.content
        if self.state is not None:
            payload["state"] = self.state
        return payload


def output_event(text: str) -> StreamEvent:
    return StreamEvent(event="output", content=text)


def state_event(state: str) -> StreamEvent:
    return StreamEvent(event="state", state=state)


def error_event(message: str) -> StreamEvent:
    return StreamEvent(event="error", content=message)


def info_event(message: str) -> StreamEvent:
    return StreamEvent(event="info", content=message)


def tool_use_event(tool_name: str, parameters: dict[str, Any] | None) -> StreamEvent:
    return StreamEvent(event="tool_use", tool_name=tool_name, parameters=dict(parameters or {}))


def file_changes_event(changes: list[FileChange]) -> StreamEvent:
    return StreamEvent(event="file_changes", changes=tuple(changes))

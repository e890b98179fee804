"""Protocol layer: request/response DTOs for the HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

StateType = Literal["none", "starting", "active", "waiting", "shutting_down", "stopped"]


class StartRequest(BaseModel):
    """Optional body of POST /start."""

    working_directory: str | None = Field(
        default=None,
        description="Directory the assistant runs in; defaults to REPO_PATH or the server cwd.",
    )


class StartResponse(BaseModel):
    success: bool = True
    state: StateType
    working_directory: str


class MessageRequest(BaseModel):
    """Body of POST /message."""

    content: str = Field(..., min_length=1, description="User turn forwarded to the assistant.")


class MessageResponse(BaseModel):
    success: bool = True
    queued: bool = True
    state: StateType
    resumed: bool | None = None
    started: bool | None = None


class StatusResponse(BaseModel):
    state: StateType
    resume_token: str
    working_directory: str | None = None
    last_activity: datetime | None = None
    idle_seconds: int = 0
    recent_output: str = ""


class DiffResponse(BaseModel):
    file: str
    diff: str


class ErrorResponse(BaseModel):
    error: str
    code: str
    state: StateType | None = None

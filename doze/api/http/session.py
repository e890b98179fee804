"""HTTP API layer: start/message/status/diff translated into session calls."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from doze.api.deps import get_container, get_session
from doze.core.container import AppContainer
from doze.infra.observability.logger import get_logger, short
from doze.protocol.messages import (
    DiffResponse,
    MessageRequest,
    MessageResponse,
    StartRequest,
    StartResponse,
    StatusResponse,
)
from doze.session.machine import Session
from doze.session.vcs import diff_for_file

router = APIRouter(tags=["session"])
logger = get_logger(__name__)


@router.post("/start", response_model=StartResponse)
def start(
    request: StartRequest | None = Body(default=None),
    container: AppContainer = Depends(get_container),
) -> StartResponse:
    requested = request.working_directory.strip() if request and request.working_directory else ""
    working_directory = (
        Path(requested).expanduser() if requested else container.settings.default_working_directory()
    )
    logger.info("api.start.request working_directory=%s", working_directory)
    state = container.session.start(working_directory)
    return StartResponse(
        state=state.value,
        working_directory=str(container.session.working_directory or working_directory),
    )


@router.post("/message", response_model=MessageResponse, response_model_exclude_none=True)
def message(
    request: MessageRequest,
    session: Session = Depends(get_session),
) -> MessageResponse:
    logger.info("api.message.request state=%s content=%s", session.state.value, short(request.content, limit=160))
    outcome = session.send_message(request.content)
    logger.info(
        "api.message.response state=%s started=%s resumed=%s",
        outcome.state.value,
        outcome.started,
        outcome.resumed,
    )
    return MessageResponse(
        state=outcome.state.value,
        started=True if outcome.started else None,
        resumed=True if outcome.resumed else None,
    )


@router.get("/status", response_model=StatusResponse)
def status(container: AppContainer = Depends(get_container)) -> StatusResponse:
    snapshot = container.session.snapshot(
        recent_output_chars=container.settings.status_recent_output_chars,
    )
    return StatusResponse(
        state=snapshot.state.value,
        resume_token=snapshot.resume_token,
        working_directory=str(snapshot.working_directory) if snapshot.working_directory else None,
        last_activity=snapshot.last_activity_at,
        idle_seconds=snapshot.idle_seconds,
        recent_output=snapshot.recent_output,
    )


@router.get("/diff", response_model=DiffResponse)
def diff(
    file: str = Query(default="", description="Path relative to the working directory."),
    session: Session = Depends(get_session),
) -> DiffResponse:
    if not file:
        raise HTTPException(status_code=400, detail="file parameter required")
    working_directory = session.working_directory
    if working_directory is None:
        raise HTTPException(status_code=400, detail="no active session")
    return DiffResponse(file=file, diff=diff_for_file(working_directory, file))

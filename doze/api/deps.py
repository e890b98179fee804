"""API layer: dependency helpers to access shared container from request state."""

from __future__ import annotations

from fastapi import Request

from doze.core.container import AppContainer
from doze.session.machine import Session


def get_container(request: Request) -> AppContainer:
    return request.app.state.container  # type: ignore[return-value]


def get_session(request: Request) -> Session:
    return get_container(request).session

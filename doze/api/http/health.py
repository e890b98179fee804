"""HTTP API layer: liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from doze.api.deps import get_container
from doze.core.container import AppContainer

router = APIRouter(tags=["health"])


@router.get("/health")
def health(container: AppContainer = Depends(get_container)) -> dict:
    return {
        "status": "ok",
        "env": container.settings.env,
        "state": container.session.state.value,
    }

"""Lifecycle hooks for startup diagnostics and assistant cleanup."""

from __future__ import annotations

from doze.core.container import AppContainer
from doze.infra.observability.logger import get_logger

logger = get_logger(__name__)


def on_startup(container: AppContainer) -> None:
    settings = container.settings
    logger.info(
        "Doze API ready: command=%s cwd=%s idle_timeout=%ss grace=%ss skip_permissions=%s",
        settings.assistant_command,
        settings.default_working_directory(),
        settings.idle_timeout_seconds,
        settings.grace_period_seconds,
        settings.skip_permissions,
    )


def on_shutdown(container: AppContainer) -> None:
    container.session.shutdown()
    logger.info("Doze API shutdown complete.")

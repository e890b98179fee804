"""Observability layer: process-wide logger setup for API, session and relay tracing."""

from __future__ import annotations

import logging

# Session transitions arrive from reader and timer threads; the thread name tells them apart.
_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(threadName)s | %(message)s"
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def setup_logging(level: str = "INFO") -> None:
    """Route root, uvicorn and session loggers into one console format."""
    resolved = level.upper()
    logging.basicConfig(level=resolved, format=_FORMAT, force=True)
    for server_name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(server_name)
        server_logger.handlers.clear()
        server_logger.setLevel(resolved)
        server_logger.propagate = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def short(text: str | None, *, limit: int = 120) -> str:
    """Collapse whitespace and truncate free text for log lines."""
    if not isinstance(text, str):
        return ""
    compact = " ".join(text.split())
    if len(compact) <= limit:
        return compact
    return f"{compact[: max(1, limit - 3)].rstrip()}..."

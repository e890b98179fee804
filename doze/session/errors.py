"""Session error taxonomy surfaced synchronously to HTTP callers."""

from __future__ import annotations


class SessionError(RuntimeError):
    """Base error for session operations; carries the state observed at failure."""

    code = "session_error"
    status_code = 500

    def __init__(self, message: str, *, state: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.state = state


class AlreadyActiveError(SessionError):
    """Start requested while a process is already live."""

    code = "already_active"
    status_code = 409


class NotReadyError(SessionError):
    """Process spawn still in progress; caller should retry."""

    code = "not_ready"
    status_code = 503


class BusyError(SessionError):
    """Idle shutdown in progress; caller should wait for the stopped state."""

    code = "busy"
    status_code = 409


class SpawnFailedError(SessionError):
    code = "spawn_failed"
    status_code = 500


class SendFailedError(SessionError):
    code = "send_failed"
    status_code = 500

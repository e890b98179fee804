"""Session state machine: spawn, resume and idle shutdown of the assistant process.

All transitions run under one state lock. Reader threads and timer callbacks
re-enter through the same lock and identify themselves (relay generation,
idle ticket) so late signals from a replaced process or cancelled timer are
ignored rather than applied to the current generation.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Callable

from doze.infra.observability.logger import get_logger, short
from doze.session.errors import (
    AlreadyActiveError,
    BusyError,
    NotReadyError,
    SendFailedError,
    SpawnFailedError,
)
from doze.session.events import FileChange, error_event, file_changes_event, state_event
from doze.session.hub import EventHub
from doze.session.output_buffer import OutputBuffer
from doze.session.process import AssistantCommand, ProcessLauncher
from doze.session.relay import ProcessRelay
from doze.session.scheduler import Scheduler, TimerHandle
from doze.session.tools import ToolProfiles

logger = get_logger(__name__)

CLEAR_COMMAND = "/clear"


class SessionState(str, Enum):
    NONE = "none"
    STARTING = "starting"
    ACTIVE = "active"
    WAITING = "waiting"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


RESTARTABLE_STATES = frozenset({SessionState.NONE, SessionState.STOPPED})
LIVE_STATES = frozenset(
    {
        SessionState.STARTING,
        SessionState.ACTIVE,
        SessionState.WAITING,
        SessionState.SHUTTING_DOWN,
    }
)

FileChangeDetector = Callable[[Path], list[FileChange]]


@dataclass(frozen=True)
class MessageOutcome:
    """How a message was accepted."""

    state: SessionState
    started: bool = False
    resumed: bool = False


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view for the status endpoint."""

    state: SessionState
    resume_token: str
    working_directory: Path | None
    last_activity_at: datetime | None
    last_output_at: datetime | None
    idle_seconds: int
    recent_output: str
    pid: int | None


@dataclass(frozen=True)
class _SpawnPlan:
    generation: int
    working_directory: Path
    resume_token: str
    revert_to: SessionState
    previous_working_directory: Path | None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Session:
    """The single process-wide conversation with the assistant."""

    def __init__(
        self,
        *,
        launcher: ProcessLauncher,
        command: AssistantCommand,
        buffer: OutputBuffer,
        hub: EventHub,
        scheduler: Scheduler,
        tools: ToolProfiles,
        default_working_directory: Callable[[], Path],
        idle_timeout_seconds: float,
        grace_period_seconds: float,
        file_change_detector: FileChangeDetector | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._launcher = launcher
        self._command = command
        self._buffer = buffer
        self._hub = hub
        self._scheduler = scheduler
        self._tools = tools
        self._default_working_directory = default_working_directory
        self._idle_timeout = idle_timeout_seconds
        self._grace_period = grace_period_seconds
        self._file_change_detector = file_change_detector
        self._clock = clock

        self._lock = threading.Lock()
        self._state = SessionState.NONE
        self._resume_token = ""
        self._working_directory: Path | None = None
        self._last_activity_at: datetime | None = None
        self._last_output_at: datetime | None = None
        self._relay: ProcessRelay | None = None
        self._generation = 0
        self._idle_timer: TimerHandle | None = None
        self._idle_ticket = 0
        self._kill_timer: TimerHandle | None = None

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def resume_token(self) -> str:
        with self._lock:
            return self._resume_token

    @property
    def idle_timer_armed(self) -> bool:
        with self._lock:
            return self._idle_timer is not None

    @property
    def relay(self) -> ProcessRelay | None:
        with self._lock:
            return self._relay

    @property
    def buffer(self) -> OutputBuffer:
        return self._buffer

    @property
    def hub(self) -> EventHub:
        return self._hub

    def start(self, working_directory: Path | None = None) -> SessionState:
        """Spawn a fresh process; valid from none or stopped only."""
        with self._lock:
            if self._state not in RESTARTABLE_STATES:
                raise AlreadyActiveError("session already active", state=self._state.value)
            plan = self._begin_spawn(
                self._resolve_working_directory(working_directory),
                resume_token="",
                reason="start",
            )
        relay = self._launch(plan)
        with self._lock:
            self._adopt(relay)
            self._transition(SessionState.WAITING, reason="process_ready")
            self._arm_idle_timer()
            logger.info(
                "session.ready pid=%s idle_timeout=%s cwd=%s",
                relay.pid,
                self._idle_timeout,
                self._working_directory,
            )
            return self._state

    def send_message(self, text: str) -> MessageOutcome:
        """Deliver one user turn, starting or resuming the process when needed."""
        with self._lock:
            state = self._state
            if state in (SessionState.WAITING, SessionState.ACTIVE):
                return self._send_to_live(text)
            if state == SessionState.STARTING:
                raise NotReadyError("session is starting, please wait", state=state.value)
            if state == SessionState.SHUTTING_DOWN:
                raise BusyError("session is shutting down, retry once stopped", state=state.value)
            if state == SessionState.STOPPED and self._resume_token:
                logger.info(
                    "session.resume_requested message=%s has_resume_token=True",
                    short(text, limit=80),
                )
                plan = self._begin_spawn(
                    self._resolve_working_directory(self._working_directory),
                    resume_token=self._resume_token,
                    reason="resume",
                )
                resumed = True
            else:
                if state == SessionState.STOPPED:
                    logger.warning("session.resume_unavailable reason=no_resume_token")
                logger.info("session.start_from_message message=%s", short(text, limit=80))
                plan = self._begin_spawn(
                    self._resolve_working_directory(self._working_directory),
                    resume_token="",
                    reason="first_message",
                )
                resumed = False

        relay = self._launch(plan)
        with self._lock:
            self._adopt(relay)
            self._transition(SessionState.ACTIVE, reason="resume" if resumed else "first_message")
            self._touch_activity()
            # The queued turn reaches stdin before any later message.
            self._write(relay, text)
            return MessageOutcome(state=self._state, started=not resumed, resumed=resumed)

    def notify_turn_complete(self, resume_token: str = "") -> bool:
        """Active -> waiting on end of turn; duplicates are ignored."""
        with self._lock:
            return self._complete_turn(resume_token)

    def idle_timeout_fired(self, ticket: int | None = None) -> bool:
        """Waiting -> shutting_down: interrupt now, force-kill after the grace period."""
        with self._lock:
            if ticket is not None and ticket != self._idle_ticket:
                logger.debug("session.idle_timer_stale ticket=%s current=%s", ticket, self._idle_ticket)
                return False
            if self._state != SessionState.WAITING or self._relay is None:
                logger.warning(
                    "session.idle_timeout_ignored state=%s expected=%s",
                    self._state.value,
                    SessionState.WAITING.value,
                )
                return False
            self._idle_timer = None
            self._idle_ticket += 1
            relay = self._relay
            logger.info(
                "session.idle_timeout timeout=%s pid=%s has_resume_token=%s",
                self._idle_timeout,
                relay.pid,
                bool(self._resume_token),
            )
            self._transition(SessionState.SHUTTING_DOWN, reason="idle_timeout")
            self._signal_shutdown(relay)
            return True

    def notify_process_exited(self, returncode: int | None = None) -> bool:
        """Shutting_down -> stopped when expected, anything else -> none with an error event."""
        with self._lock:
            return self._process_exited(returncode)

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop a live process when the server itself is going away."""
        with self._lock:
            relay = self._relay
            if relay is None:
                return
            if self._state in (SessionState.WAITING, SessionState.ACTIVE):
                self._cancel_idle_timer()
                self._transition(SessionState.SHUTTING_DOWN, reason="server_shutdown")
                self._signal_shutdown(relay)
        wait = self._grace_period if timeout is None else timeout
        if not relay.join(wait):
            relay.force_kill()

    def snapshot(self, *, recent_output_chars: int = 500) -> SessionSnapshot:
        with self._lock:
            now = self._clock()
            idle_seconds = 0
            if self._last_activity_at is not None:
                idle_seconds = max(0, int((now - self._last_activity_at).total_seconds()))
            recent = self._buffer.text()
            if recent_output_chars >= 0 and len(recent) > recent_output_chars:
                recent = recent[len(recent) - recent_output_chars :]
            return SessionSnapshot(
                state=self._state,
                resume_token=self._resume_token,
                working_directory=self._working_directory,
                last_activity_at=self._last_activity_at,
                last_output_at=self._last_output_at,
                idle_seconds=idle_seconds,
                recent_output=recent,
                pid=self._relay.pid if self._relay is not None else None,
            )

    def replay(self) -> tuple[str, SessionState]:
        """Buffered output and current state for a newly connected client."""
        with self._lock:
            return self._buffer.text(), self._state

    @property
    def working_directory(self) -> Path | None:
        with self._lock:
            return self._working_directory

    # Relay callbacks: run on reader threads, ignored for replaced generations.

    def relay_output_seen(self, relay: ProcessRelay) -> None:
        with self._lock:
            if relay is not self._relay:
                return
            now = self._clock()
            self._last_output_at = now
            self._last_activity_at = now

    def relay_resume_token(self, relay: ProcessRelay, token: str) -> None:
        with self._lock:
            if relay is not self._relay or not token:
                return
            self._record_resume_token(token)

    def relay_turn_completed(self, relay: ProcessRelay, token: str) -> None:
        with self._lock:
            if relay is not self._relay:
                logger.debug("session.stale_turn_complete generation=%s", relay.generation)
                return
            self._complete_turn(token)

    def relay_exited(self, relay: ProcessRelay, returncode: int | None) -> None:
        with self._lock:
            if relay is not self._relay:
                logger.info(
                    "session.stale_exit generation=%s current=%s",
                    relay.generation,
                    self._relay.generation if self._relay is not None else None,
                )
                return
            self._process_exited(returncode)

    # Helpers below expect the state lock to be held.

    def _begin_spawn(self, working_directory: Path, *, resume_token: str, reason: str) -> _SpawnPlan:
        plan = _SpawnPlan(
            generation=self._generation + 1,
            working_directory=working_directory,
            resume_token=resume_token,
            revert_to=self._state,
            previous_working_directory=self._working_directory,
        )
        self._generation = plan.generation
        self._working_directory = working_directory
        self._touch_activity()
        self._transition(SessionState.STARTING, reason=reason)
        return plan

    def _launch(self, plan: _SpawnPlan) -> ProcessRelay:
        # Runs without the lock; every other operation is rejected while starting.
        try:
            return ProcessRelay.spawn(
                launcher=self._launcher,
                command=self._command,
                working_directory=plan.working_directory,
                resume_token=plan.resume_token,
                generation=plan.generation,
                buffer=self._buffer,
                hub=self._hub,
                tools=self._tools,
                listener=self,
            )
        except SpawnFailedError as exc:
            with self._lock:
                self._working_directory = plan.previous_working_directory
                self._transition(plan.revert_to, reason="spawn_failed")
            logger.error(
                "session.spawn_failed cwd=%s has_resume_token=%s error=%s",
                plan.working_directory,
                bool(plan.resume_token),
                exc,
            )
            raise SpawnFailedError(exc.message, state=plan.revert_to.value) from exc

    def _adopt(self, relay: ProcessRelay) -> None:
        self._relay = relay
        relay.start()

    def _send_to_live(self, text: str) -> MessageOutcome:
        relay = self._relay
        if relay is None:
            raise SendFailedError("assistant input is not available", state=self._state.value)
        if text.strip() == CLEAR_COMMAND:
            self._buffer.clear()
            logger.info("session.buffer_cleared reason=clear_command")
        self._write(relay, text)
        self._touch_activity()
        if self._state == SessionState.WAITING:
            self._cancel_idle_timer()
            self._transition(SessionState.ACTIVE, reason="user_message")
        return MessageOutcome(state=self._state)

    def _write(self, relay: ProcessRelay, text: str) -> None:
        try:
            relay.send_line(text)
        except SendFailedError as exc:
            exc.state = self._state.value
            raise

    def _complete_turn(self, resume_token: str) -> bool:
        if self._state != SessionState.ACTIVE:
            logger.info("session.turn_complete_ignored state=%s", self._state.value)
            return False
        if resume_token:
            self._record_resume_token(resume_token)
        self._transition(SessionState.WAITING, reason="turn_complete")
        self._arm_idle_timer()
        self._scan_file_changes()
        return True

    def _process_exited(self, returncode: int | None) -> bool:
        if self._state not in LIVE_STATES:
            logger.info("session.exit_ignored state=%s", self._state.value)
            return False
        expected = self._state == SessionState.SHUTTING_DOWN
        pid = self._relay.pid if self._relay is not None else None
        self._relay = None
        self._cancel_idle_timer()
        if self._kill_timer is not None:
            self._kill_timer.cancel()
            self._kill_timer = None
        if expected:
            self._transition(SessionState.STOPPED, reason="process_exited")
            logger.info(
                "session.stopped pid=%s returncode=%s has_resume_token=%s",
                pid,
                returncode,
                bool(self._resume_token),
            )
            return True
        logger.error(
            "session.unexpected_exit pid=%s returncode=%s has_resume_token=%s",
            pid,
            returncode,
            bool(self._resume_token),
        )
        self._transition(SessionState.NONE, reason="unexpected_exit")
        self._hub.broadcast(error_event("Assistant process exited unexpectedly"))
        return False

    def _signal_shutdown(self, relay: ProcessRelay) -> None:
        try:
            relay.terminate()
        except OSError as exc:
            logger.error("session.interrupt_failed pid=%s error=%s", relay.pid, exc)
            relay.force_kill()
            return
        # Bound to this relay so a resumed process is never the one killed.
        self._kill_timer = self._scheduler.call_later(self._grace_period, relay.force_kill)

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        ticket = self._idle_ticket
        self._idle_timer = self._scheduler.call_later(
            self._idle_timeout,
            partial(self.idle_timeout_fired, ticket),
        )

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None
        self._idle_ticket += 1

    def _record_resume_token(self, token: str) -> None:
        if token == self._resume_token:
            return
        self._resume_token = token
        logger.info("session.resume_token_captured token=%s", token)

    def _touch_activity(self) -> None:
        self._last_activity_at = self._clock()

    def _resolve_working_directory(self, working_directory: Path | None) -> Path:
        if working_directory is None:
            return self._default_working_directory()
        return Path(working_directory).expanduser()

    def _scan_file_changes(self) -> None:
        detector = self._file_change_detector
        working_directory = self._working_directory
        if detector is None or working_directory is None:
            return

        def scan() -> None:
            changes = detector(working_directory)
            if changes:
                logger.info("session.file_changes count=%s", len(changes))
                self._hub.broadcast(file_changes_event(changes))

        threading.Thread(target=scan, name="doze-vcs", daemon=True).start()

    def _transition(self, new_state: SessionState, *, reason: str) -> None:
        previous = self._state
        self._state = new_state
        logger.info(
            "session.transition from=%s to=%s reason=%s pid=%s has_resume_token=%s",
            previous.value,
            new_state.value,
            reason,
            self._relay.pid if self._relay is not None else None,
            bool(self._resume_token),
        )
        self._hub.broadcast(state_event(new_state.value))

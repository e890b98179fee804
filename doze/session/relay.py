"""Subprocess I/O adapter: drain one assistant process into the buffer and the hub."""

from __future__ import annotations

import codecs
import subprocess
import threading
from pathlib import Path
from typing import IO, Iterator, Protocol

from doze.infra.observability.logger import get_logger, short
from doze.session.errors import SendFailedError, SpawnFailedError
from doze.session.events import (
    error_event,
    file_changes_event,
    info_event,
    output_event,
    tool_use_event,
)
from doze.session.hub import EventHub
from doze.session.output_buffer import OutputBuffer
from doze.session.process import AssistantCommand, ProcessHandle, ProcessLauncher
from doze.session.protocol import AssistantMessage, encode_user_turn, parse_line
from doze.session.tools import ToolProfiles

logger = get_logger(__name__)

STDERR_READ_SIZE = 1024
MAX_LINE_BYTES = 1024 * 1024
_DRAIN_JOIN_SECONDS = 5.0


class RelayListener(Protocol):
    """Callbacks a relay makes into the session that owns it."""

    def relay_output_seen(self, relay: "ProcessRelay") -> None: ...

    def relay_resume_token(self, relay: "ProcessRelay", token: str) -> None: ...

    def relay_turn_completed(self, relay: "ProcessRelay", token: str) -> None: ...

    def relay_exited(self, relay: "ProcessRelay", returncode: int | None) -> None: ...


class ProcessRelay:
    """One process generation: its handle, three reader threads and its stdin writer."""

    def __init__(
        self,
        *,
        handle: ProcessHandle,
        generation: int,
        buffer: OutputBuffer,
        hub: EventHub,
        tools: ToolProfiles,
        listener: RelayListener,
        max_line_bytes: int = MAX_LINE_BYTES,
    ) -> None:
        self._handle = handle
        self.generation = generation
        self._buffer = buffer
        self._hub = hub
        self._tools = tools
        self._listener = listener
        self._max_line_bytes = max_line_bytes
        self._stdin_lock = threading.Lock()
        self._exited = threading.Event()
        self._finished = threading.Event()
        self._threads: list[threading.Thread] = []
        self.returncode: int | None = None

    @classmethod
    def spawn(
        cls,
        *,
        launcher: ProcessLauncher,
        command: AssistantCommand,
        working_directory: Path,
        resume_token: str,
        generation: int,
        buffer: OutputBuffer,
        hub: EventHub,
        tools: ToolProfiles,
        listener: RelayListener,
    ) -> "ProcessRelay":
        """Launch the assistant; readers start only once `start()` is called."""
        argv = command.argv(resume_token)
        try:
            handle = launcher.launch(argv, working_directory)
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            raise SpawnFailedError(f"failed to start assistant: {exc}") from exc
        logger.info(
            "relay.spawned pid=%s generation=%s cwd=%s has_resume_token=%s",
            handle.pid,
            generation,
            working_directory,
            bool(resume_token),
        )
        return cls(
            handle=handle,
            generation=generation,
            buffer=buffer,
            hub=hub,
            tools=tools,
            listener=listener,
        )

    @property
    def pid(self) -> int | None:
        return self._handle.pid

    @property
    def alive(self) -> bool:
        return not self._exited.is_set() and self._handle.poll() is None

    def start(self) -> None:
        stdout = threading.Thread(
            target=self._drain_stdout,
            name=f"doze-stdout-{self.generation}",
            daemon=True,
        )
        stderr = threading.Thread(
            target=self._drain_stderr,
            name=f"doze-stderr-{self.generation}",
            daemon=True,
        )
        waiter = threading.Thread(
            target=self._wait_for_exit,
            args=(stdout, stderr),
            name=f"doze-exit-{self.generation}",
            daemon=True,
        )
        self._threads = [stdout, stderr, waiter]
        for thread in self._threads:
            thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait until the exit has been reported to the listener."""
        return self._finished.wait(timeout)

    def send_line(self, text: str) -> None:
        payload = encode_user_turn(text)
        with self._stdin_lock:
            try:
                self._handle.stdin.write(payload)
                self._handle.stdin.flush()
            except (OSError, ValueError) as exc:
                logger.error(
                    "relay.stdin_write_failed pid=%s generation=%s error=%s",
                    self.pid,
                    self.generation,
                    exc,
                )
                raise SendFailedError(f"failed to send message to assistant: {exc}") from exc
        logger.info(
            "relay.sent pid=%s generation=%s message=%s",
            self.pid,
            self.generation,
            short(text, limit=160),
        )

    def terminate(self) -> None:
        """Send the graceful interrupt; OSError propagates to the caller."""
        logger.info("relay.interrupt pid=%s generation=%s", self.pid, self.generation)
        self._handle.interrupt()

    def force_kill(self) -> bool:
        """Kill this exact process if it is still running; no-op once it has exited."""
        if self._exited.is_set() or self._handle.poll() is not None:
            logger.debug(
                "relay.force_kill_skipped pid=%s generation=%s reason=already_exited",
                self.pid,
                self.generation,
            )
            return False
        logger.warning("relay.force_kill pid=%s generation=%s", self.pid, self.generation)
        try:
            self._handle.kill()
        except OSError as exc:
            logger.debug(
                "relay.force_kill_failed pid=%s generation=%s error=%s",
                self.pid,
                self.generation,
                exc,
            )
            return False
        return True

    def _drain_stdout(self) -> None:
        stream: IO[bytes] = self._handle.stdout
        lines = 0
        try:
            for raw in self._read_lines(stream):
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not line.strip():
                    continue
                lines += 1
                self._listener.relay_output_seen(self)
                self._handle_line(line)
        except (OSError, ValueError) as exc:
            # Treated as stream closure; the exit waiter reports the process end.
            logger.warning(
                "relay.stdout_error pid=%s generation=%s error=%s",
                self.pid,
                self.generation,
                exc,
            )
        logger.info("relay.stdout_closed pid=%s generation=%s lines=%s", self.pid, self.generation, lines)

    def _read_lines(self, stream: IO[bytes]) -> Iterator[bytes]:
        """Yield complete lines; a line longer than the cap is skipped whole."""
        limit = self._max_line_bytes + 1
        while True:
            raw = stream.readline(limit)
            if not raw:
                return
            if len(raw) < limit or raw.endswith(b"\n"):
                yield raw
                continue
            skipped = len(raw)
            while raw and not raw.endswith(b"\n"):
                raw = stream.readline(limit)
                skipped += len(raw)
            logger.warning(
                "relay.line_too_long pid=%s generation=%s bytes=%s limit=%s",
                self.pid,
                self.generation,
                skipped,
                self._max_line_bytes,
            )
            self._hub.broadcast(error_event(f"Skipped an assistant output line of {skipped} bytes"))

    def _handle_line(self, line: str) -> None:
        message = parse_line(line)
        if message is None:
            logger.warning("relay.non_json_stdout pid=%s content=%s", self.pid, short(line))
            self._emit_output(line + "\n")
            return

        if message.type == "assistant":
            self._handle_assistant(message)
        elif message.type == "result":
            self._listener.relay_turn_completed(self, message.session_id or "")
        elif message.type == "error":
            text = message.error_text or "assistant reported an error"
            self._buffer.write(f"[Error] {text}\n")
            self._hub.broadcast(error_event(text))
        elif message.type == "system":
            if message.session_id:
                self._listener.relay_resume_token(self, message.session_id)
            logger.debug("relay.system subtype=%s", message.subtype)
        elif message.type == "user":
            logger.debug("relay.user_echo pid=%s", self.pid)
        else:
            logger.warning("relay.unknown_type type=%s raw=%s", message.type, short(line))

    def _handle_assistant(self, message: AssistantMessage) -> None:
        if message.session_id:
            self._listener.relay_resume_token(self, message.session_id)
        for block in message.tool_uses:
            name = block.name or ""
            logger.debug("relay.tool_use tool=%s input=%s", name, short(str(block.input)))
            self._hub.broadcast(tool_use_event(name, block.input))
            self._hub.broadcast(info_event(self._tools.describe(name, block.input)))
            change = self._tools.file_edit(name, block.input)
            if change is not None:
                logger.info(
                    "relay.file_edit tool=%s path=%s operation=%s",
                    name,
                    change.path,
                    change.operation,
                )
                self._hub.broadcast(file_changes_event([change]))
        text = message.text
        if text:
            self._emit_output(text)

    def _emit_output(self, text: str) -> None:
        self._buffer.write(text)
        self._hub.broadcast(output_event(text))

    def _drain_stderr(self) -> None:
        stream: IO[bytes] = self._handle.stderr
        read = getattr(stream, "read1", stream.read)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = read(STDERR_READ_SIZE)
                if not chunk:
                    break
                self._buffer.write(chunk)
                text = decoder.decode(chunk)
                if text:
                    logger.debug("relay.stderr pid=%s content=%s", self.pid, short(text))
                    self._hub.broadcast(output_event(text))
        except (OSError, ValueError) as exc:
            logger.warning(
                "relay.stderr_error pid=%s generation=%s error=%s",
                self.pid,
                self.generation,
                exc,
            )
        tail = decoder.decode(b"", final=True)
        if tail:
            self._hub.broadcast(output_event(tail))

    def _wait_for_exit(self, stdout: threading.Thread, stderr: threading.Thread) -> None:
        try:
            self.returncode = self._handle.wait()
        except OSError as exc:
            logger.error("relay.wait_failed pid=%s error=%s", self.pid, exc)
        # Drain what the process wrote before it died so clients see it before the state change.
        stdout.join(_DRAIN_JOIN_SECONDS)
        stderr.join(_DRAIN_JOIN_SECONDS)
        self._exited.set()
        if self.returncode:
            logger.warning(
                "relay.exited pid=%s generation=%s returncode=%s",
                self.pid,
                self.generation,
                self.returncode,
            )
        else:
            logger.info(
                "relay.exited pid=%s generation=%s returncode=%s",
                self.pid,
                self.generation,
                self.returncode,
            )
        try:
            self._listener.relay_exited(self, self.returncode)
        finally:
            self._finished.set()

"""Unit tests for stdout/stderr parsing and stdin writes of one process generation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from doze.session.errors import SendFailedError, SpawnFailedError
from doze.session.hub import EventHub
from doze.session.output_buffer import OutputBuffer
from doze.session.process import AssistantCommand
from doze.session.relay import ProcessRelay
from doze.session.tools import ToolProfiles
from doze.tests.fakes import FakeLauncher, FakeProcess, drain


class RecordingListener:
    def __init__(self) -> None:
        self.output_seen = 0
        self.tokens: list[str] = []
        self.turns: list[str] = []
        self.exits: list[int | None] = []

    def relay_output_seen(self, relay: ProcessRelay) -> None:
        self.output_seen += 1

    def relay_resume_token(self, relay: ProcessRelay, token: str) -> None:
        self.tokens.append(token)

    def relay_turn_completed(self, relay: ProcessRelay, token: str) -> None:
        self.turns.append(token)

    def relay_exited(self, relay: ProcessRelay, returncode: int | None) -> None:
        self.exits.append(returncode)


def _build(proc: FakeProcess | None = None, *, max_line_bytes: int = 1024 * 1024):
    proc = proc or FakeProcess()
    buffer = OutputBuffer(capacity=1024)
    hub = EventHub(queue_size=100)
    client = hub.subscribe()
    listener = RecordingListener()
    relay = ProcessRelay(
        handle=proc,
        generation=1,
        buffer=buffer,
        hub=hub,
        tools=ToolProfiles(),
        listener=listener,
        max_line_bytes=max_line_bytes,
    )
    return proc, relay, buffer, client, listener


def _finish(proc: FakeProcess, relay: ProcessRelay, code: int = 0) -> None:
    proc.exit(code)
    assert relay.join(5)


def test_assistant_text_reaches_buffer_and_clients() -> None:
    proc, relay, buffer, client, listener = _build()
    relay.start()

    proc.emit_stdout(
        {
            "type": "assistant",
            "session_id": "abc123",
            "message": {"content": [{"type": "text", "text": "Hello world"}]},
        }
    )
    proc.emit_stdout({"type": "result", "subtype": "success", "session_id": "abc123"})
    _finish(proc, relay)

    events = drain(client)
    assert [item.content for item in events if item.event == "output"] == ["Hello world"]
    assert buffer.text() == "Hello world"
    assert listener.tokens == ["abc123"]
    assert listener.turns == ["abc123"]
    assert listener.output_seen == 2
    assert listener.exits == [0]


def test_tool_use_emits_tool_info_and_file_change_events() -> None:
    proc, relay, _, client, _ = _build()
    relay.start()

    proc.emit_stdout(
        {
            "type": "assistant",
            "message": {
                "content": [
                    {"type": "tool_use", "id": "t1", "name": "Edit", "input": {"file_path": "src/app.py"}},
                ]
            },
        }
    )
    _finish(proc, relay)

    events = drain(client)
    assert [item.event for item in events] == ["tool_use", "info", "file_changes"]
    assert json.loads(events[0].wire_payload()["content"]) == {
        "tool": "Edit",
        "input": {"file_path": "src/app.py"},
    }
    assert events[1].content == "🔧 Edit app.py"
    assert events[2].changes is not None
    assert events[2].changes[0].path == "src/app.py"
    assert events[2].changes[0].operation == "edit"


def test_non_json_and_error_lines() -> None:
    proc, relay, buffer, client, listener = _build()
    relay.start()

    proc.emit_stdout("plain progress text")
    proc.emit_stdout("")
    proc.emit_stdout({"type": "system", "subtype": "init", "session_id": "sys-1"})
    proc.emit_stdout({"type": "user", "message": {"content": "echo"}})
    proc.emit_stdout({"type": "error", "message": "rate limited"})
    _finish(proc, relay)

    events = drain(client)
    assert [(item.event, item.content) for item in events] == [
        ("output", "plain progress text\n"),
        ("error", "rate limited"),
    ]
    assert buffer.text() == "plain progress text\n[Error] rate limited\n"
    assert listener.tokens == ["sys-1"]
    assert listener.turns == []


def test_stderr_is_relayed_as_output() -> None:
    proc, relay, buffer, client, _ = _build()
    relay.start()

    proc.emit_stderr("warning: something\n")
    _finish(proc, relay)

    outputs = "".join(item.content or "" for item in drain(client) if item.event == "output")
    assert outputs == "warning: something\n"
    assert buffer.text() == "warning: something\n"


def test_exit_is_reported_after_output_is_drained() -> None:
    proc, relay, _, client, listener = _build()
    relay.start()

    proc.emit_stdout({"type": "assistant", "message": {"content": "last words"}})
    _finish(proc, relay, code=3)

    assert listener.exits == [3]
    assert relay.returncode == 3
    assert not relay.alive
    assert [item.content for item in drain(client)] == ["last words"]


def test_oversized_line_is_skipped_and_reading_continues() -> None:
    proc, relay, buffer, client, listener = _build(max_line_bytes=80)
    relay.start()

    proc.emit_stdout({"type": "assistant", "message": {"content": "ok"}})
    proc.emit_stdout("x" * 200)
    proc.emit_stdout("y" * 80)
    proc.emit_stdout({"type": "result", "subtype": "success", "session_id": "s-1"})
    _finish(proc, relay)

    events = drain(client)
    assert [(item.event, item.content) for item in events] == [
        ("output", "ok"),
        ("error", "Skipped an assistant output line of 201 bytes"),
        ("output", "y" * 80 + "\n"),
    ]
    assert "x" not in buffer.text()
    assert listener.turns == ["s-1"]


def test_send_line_writes_stream_json_turn() -> None:
    proc, relay, _, _, _ = _build()

    relay.send_line("Explain main.go")

    assert proc.stdin.turns() == ["Explain main.go"]


def test_send_line_failure_raises_send_failed() -> None:
    proc, relay, _, _, _ = _build()
    proc.stdin.broken = True

    with pytest.raises(SendFailedError):
        relay.send_line("hello")


def test_force_kill_only_hits_a_live_process() -> None:
    proc, relay, _, _, _ = _build()
    relay.start()

    assert relay.force_kill() is True
    assert proc.kill_count == 1
    assert relay.join(5)
    assert relay.force_kill() is False
    assert proc.kill_count == 1


def test_spawn_failure_is_translated(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    launcher.fail_with = FileNotFoundError("claude: not found")

    with pytest.raises(SpawnFailedError) as excinfo:
        ProcessRelay.spawn(
            launcher=launcher,
            command=AssistantCommand(),
            working_directory=tmp_path,
            resume_token="",
            generation=1,
            buffer=OutputBuffer(),
            hub=EventHub(),
            tools=ToolProfiles(),
            listener=RecordingListener(),
        )

    assert "claude: not found" in excinfo.value.message

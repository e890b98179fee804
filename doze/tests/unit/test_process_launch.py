"""Unit tests for assistant command lines and launcher variants."""

from __future__ import annotations

from pathlib import Path

import pytest

from doze.session.process import (
    AssistantCommand,
    LocalProcessLauncher,
    RemoteExecLauncher,
    build_launcher,
)


def test_fresh_command_has_no_resume_flag() -> None:
    argv = AssistantCommand().argv()

    assert argv[0] == "claude"
    assert "--resume" not in argv
    assert "--input-format=stream-json" in argv
    assert "--output-format=stream-json" in argv
    assert "--verbose" in argv
    assert "--dangerously-skip-permissions" in argv


def test_resume_command_passes_token() -> None:
    argv = AssistantCommand(executable="/opt/bin/claude", skip_permissions=False).argv("abc123")

    assert argv[:3] == ["/opt/bin/claude", "--resume", "abc123"]
    assert "--dangerously-skip-permissions" not in argv


def test_local_launcher_rejects_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        LocalProcessLauncher().launch(["claude"], tmp_path / "missing")


def test_remote_launcher_wraps_command(monkeypatch, tmp_path: Path) -> None:
    captured: dict[str, object] = {}
    launcher = RemoteExecLauncher.from_string("ssh -T devbox")

    def fake_popen(argv, cwd):
        captured["argv"] = argv
        captured["cwd"] = cwd
        return "handle"

    monkeypatch.setattr(launcher, "_popen", fake_popen)

    assert launcher.launch(["claude", "--resume", "a b"], Path("/work/my repo")) == "handle"
    assert captured["cwd"] is None
    assert captured["argv"] == [
        "ssh",
        "-T",
        "devbox",
        "cd '/work/my repo' && exec claude --resume 'a b'",
    ]


def test_build_launcher_selects_variant() -> None:
    assert isinstance(build_launcher(""), LocalProcessLauncher)
    assert isinstance(build_launcher("docker exec -i box sh -c"), RemoteExecLauncher)
    with pytest.raises(ValueError):
        RemoteExecLauncher([])

"""Unit tests for git status parsing and best-effort change detection."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from doze.session.vcs import classify_status, detect_file_changes, diff_for_file, parse_status_line


def test_classify_status_codes() -> None:
    assert classify_status("A") == "A"
    assert classify_status("AM") == "A"
    assert classify_status("D") == "D"
    assert classify_status("R") == "R"
    assert classify_status("??") == "U"
    assert classify_status("M") == "M"
    assert classify_status("MM") == "M"


def test_parse_status_line_handles_renames_and_noise() -> None:
    assert parse_status_line(" M src/app.py") == ("M", "src/app.py")
    assert parse_status_line("?? notes.txt") == ("U", "notes.txt")
    assert parse_status_line("R  old.py -> new.py") == ("R", "new.py")
    assert parse_status_line("") is None
    assert parse_status_line("M") is None


def test_detect_file_changes_outside_repo_is_empty(tmp_path: Path) -> None:
    assert detect_file_changes(tmp_path) == []


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _init_repo(repo: Path, files: dict[str, bytes]) -> None:
    def git(*args: str) -> None:
        subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True)

    git("init", "-q")
    git("config", "user.email", "dev@example.com")
    git("config", "user.name", "Dev")
    for name, content in files.items():
        (repo / name).write_bytes(content)
    git("add", *files)
    git("commit", "-q", "-m", "init")


@requires_git
def test_detect_file_changes_reports_modified_and_untracked(tmp_path: Path) -> None:
    _init_repo(tmp_path, {"tracked.txt": b"one\n"})
    (tmp_path / "tracked.txt").write_text("one\ntwo\n", encoding="utf-8")
    (tmp_path / "fresh.txt").write_text("new\n", encoding="utf-8")

    changes = {item.path: item for item in detect_file_changes(tmp_path)}

    assert changes["tracked.txt"].status == "M"
    assert "+two" in (changes["tracked.txt"].diff or "")
    assert changes["fresh.txt"].status == "U"
    assert changes["fresh.txt"].diff == ""


@requires_git
def test_diff_for_file_modified_untracked_and_unchanged(tmp_path: Path) -> None:
    _init_repo(tmp_path, {"tracked.txt": b"one\n", "stable.txt": b"same\n"})
    (tmp_path / "tracked.txt").write_text("one\ntwo\n", encoding="utf-8")
    (tmp_path / "fresh.txt").write_text("new\n", encoding="utf-8")

    modified = diff_for_file(tmp_path, "tracked.txt")
    untracked = diff_for_file(tmp_path, "fresh.txt")

    assert "+two" in modified
    assert "-one" not in modified
    assert "+new" in untracked
    assert diff_for_file(tmp_path, "stable.txt") == ""


@requires_git
def test_non_utf8_content_is_decoded_with_replacement(tmp_path: Path) -> None:
    _init_repo(tmp_path, {"legacy.txt": b"caf\xe9\n"})
    (tmp_path / "legacy.txt").write_bytes(b"caf\xe9 cr\xe8me\n")

    changes = detect_file_changes(tmp_path)
    diff = diff_for_file(tmp_path, "legacy.txt")

    assert [item.path for item in changes] == ["legacy.txt"]
    assert "�" in (changes[0].diff or "")
    assert "+caf� cr�me" in diff

"""Version-control collaborator: best-effort git status/diff for display."""

from __future__ import annotations

import subprocess
from pathlib import Path

from doze.infra.observability.logger import get_logger
from doze.session.events import FileChange

logger = get_logger(__name__)

_GIT_TIMEOUT_SECONDS = 10.0


def _git(repo: Path, *args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        cwd=repo,
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        timeout=_GIT_TIMEOUT_SECONDS,
        check=False,
    )


def classify_status(code: str) -> str:
    """Map a porcelain XY code to one primary letter."""
    if "A" in code:
        return "A"
    if "D" in code:
        return "D"
    if "R" in code:
        return "R"
    if "?" in code:
        return "U"
    return "M"


def parse_status_line(line: str) -> tuple[str, str] | None:
    if len(line) < 4:
        return None
    code = line[0:2].strip()
    path = line[3:].strip()
    if " -> " in path:
        path = path.split(" -> ", 1)[1]
    if not path:
        return None
    return classify_status(code), path


def detect_file_changes(repo: Path) -> list[FileChange]:
    """List changed files with diffs; any failure yields an empty list."""
    try:
        status = _git(repo, "status", "--short")
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("vcs.status_failed repo=%s error=%s", repo, exc)
        return []
    if status.returncode != 0:
        logger.debug("vcs.status_failed repo=%s stderr=%s", repo, status.stderr.strip())
        return []

    changes: list[FileChange] = []
    for line in status.stdout.splitlines():
        parsed = parse_status_line(line)
        if parsed is None:
            continue
        letter, path = parsed
        diff = ""
        if letter not in {"U", "D"}:
            try:
                result = _git(repo, "diff", "HEAD", "--", path)
            except (OSError, subprocess.SubprocessError):
                result = None
            if result is not None and result.returncode == 0:
                diff = result.stdout
        changes.append(FileChange(path=path, status=letter, diff=diff))
    return changes


def _is_untracked(repo: Path, path: str) -> bool:
    try:
        result = _git(repo, "ls-files", "--others", "--exclude-standard", "--", path)
    except (OSError, subprocess.SubprocessError):
        return False
    return result.returncode == 0 and bool(result.stdout.strip())


def diff_for_file(repo: Path, path: str) -> str:
    """Diff one file against HEAD, falling back to staged, then to a whole-file diff.

    A later step runs only when git rejects the earlier one; an unchanged
    tracked file yields an empty diff. Untracked files are shown as new.
    """
    attempts = (
        ("diff", "HEAD", "--", path),
        ("diff", "--cached", "--", path),
    )
    for args in attempts:
        try:
            result = _git(repo, *args)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("vcs.diff_failed repo=%s path=%s error=%s", repo, path, exc)
            return ""
        if result.returncode == 0:
            if result.stdout or not _is_untracked(repo, path):
                return result.stdout
            break
        logger.debug("vcs.diff_rejected repo=%s path=%s args=%s", repo, path, " ".join(args[:2]))
    try:
        # --no-index exits 1 whenever the files differ.
        result = _git(repo, "diff", "--no-index", "--", "/dev/null", path)
    except (OSError, subprocess.SubprocessError):
        return ""
    return result.stdout

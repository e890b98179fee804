"""Tool-use presentation: display labels and file-edit tracking per assistant tool."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Any

import yaml

from doze.infra.observability.logger import get_logger
from doze.session.events import FileChange, utc_now_iso

logger = get_logger(__name__)

_COMMAND_LABEL_LIMIT = 60


@dataclass(frozen=True)
class ToolProfile:
    """How one tool is labelled and whether it edits files."""

    label_key: str | None = None
    label_style: str = "basename"
    file_edit: bool = False
    path_key: str | None = None
    operation: str | None = None


DEFAULT_PROFILES: dict[str, ToolProfile] = {
    "Read": ToolProfile(label_key="file_path", label_style="basename"),
    "Write": ToolProfile(
        label_key="file_path",
        label_style="basename",
        file_edit=True,
        path_key="file_path",
        operation="write",
    ),
    "Edit": ToolProfile(
        label_key="file_path",
        label_style="basename",
        file_edit=True,
        path_key="file_path",
        operation="edit",
    ),
    "NotebookEdit": ToolProfile(
        label_key="notebook_path",
        label_style="basename",
        file_edit=True,
        path_key="notebook_path",
        operation="notebook_edit",
    ),
    "Bash": ToolProfile(label_key="command", label_style="command"),
    "Glob": ToolProfile(label_key="pattern", label_style="plain"),
    "Grep": ToolProfile(label_key="pattern", label_style="colon"),
}


class ToolProfiles:
    """Built-in tool profiles, optionally overlaid by a YAML file."""

    def __init__(self, *, profiles_file: Path | None = None) -> None:
        self._profiles = dict(DEFAULT_PROFILES)
        if profiles_file is not None:
            self._profiles.update(self._load_profiles(profiles_file))

    def get(self, tool_name: str) -> ToolProfile | None:
        return self._profiles.get(tool_name)

    def describe(self, tool_name: str, params: dict[str, Any]) -> str:
        """Short human label such as `🔧 Read main.go` or `🔧 Bash: ls -la`."""
        profile = self._profiles.get(tool_name)
        value = params.get(profile.label_key) if profile and profile.label_key else None
        if not isinstance(value, str) or not value:
            return f"🔧 {tool_name}"
        if profile.label_style == "basename":
            return f"🔧 {tool_name} {PurePath(value).name}"
        if profile.label_style == "command":
            if len(value) > _COMMAND_LABEL_LIMIT:
                value = value[:_COMMAND_LABEL_LIMIT] + "..."
            return f"🔧 {tool_name}: {value}"
        if profile.label_style == "colon":
            return f"🔧 {tool_name}: {value}"
        return f"🔧 {tool_name} {value}"

    def file_edit(self, tool_name: str, params: dict[str, Any]) -> FileChange | None:
        """Return the file touched by a file-editing tool call, if any."""
        profile = self._profiles.get(tool_name)
        if profile is None or not profile.file_edit or not profile.path_key:
            return None
        path = params.get(profile.path_key)
        if not isinstance(path, str) or not path:
            return None
        return FileChange(
            path=path,
            tool=tool_name,
            operation=profile.operation or "edit",
            timestamp=utc_now_iso(),
        )

    def _load_profiles(self, profiles_file: Path) -> dict[str, ToolProfile]:
        if not profiles_file.exists():
            logger.warning("tools.profiles_missing path=%s", profiles_file)
            return {}
        try:
            raw = yaml.safe_load(profiles_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            logger.warning("tools.profiles_invalid path=%s error=%s", profiles_file, exc)
            return {}
        tool_profiles = raw.get("tool_profiles") if isinstance(raw, dict) else {}
        if not isinstance(tool_profiles, dict):
            return {}
        result: dict[str, ToolProfile] = {}
        for name, payload in tool_profiles.items():
            if not isinstance(name, str) or not isinstance(payload, dict):
                continue
            result[name] = ToolProfile(
                label_key=payload.get("label_key"),
                label_style=str(payload.get("label_style") or "plain"),
                file_edit=bool(payload.get("file_edit", False)),
                path_key=payload.get("path_key"),
                operation=payload.get("operation"),
            )
        logger.info("tools.profiles_loaded path=%s count=%s", profiles_file, len(result))
        return result

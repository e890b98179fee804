"""Configuration layer: load runtime settings from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _resolve_path(path_like: str) -> Path:
    candidate = Path(path_like).expanduser()
    if candidate.is_absolute():
        return candidate
    if candidate.exists():
        return candidate.resolve()
    return candidate


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_path(name: str) -> Path | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    return _resolve_path(raw)


@dataclass(frozen=True)
class Settings:
    """Immutable application settings used across API/session layers."""

    app_name: str = "Doze API"
    app_version: str = "0.1.0"
    env: str = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 2020
    cors_allow_origins: str = "*"
    working_directory: Path | None = None
    assistant_command: str = "claude"
    skip_permissions: bool = True
    remote_exec_prefix: str = ""
    idle_timeout_seconds: float = 30.0
    grace_period_seconds: float = 10.0
    output_buffer_bytes: int = 10 * 1024
    client_queue_size: int = 100
    sse_keepalive_seconds: float = 15.0
    sse_poll_seconds: float = 0.1
    status_recent_output_chars: int = 500
    tool_profiles_file: Path | None = None
    web_path: Path | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from process env with deterministic defaults."""
        return cls(
            app_name=os.getenv("APP_NAME", cls.app_name),
            app_version=os.getenv("APP_VERSION", cls.app_version),
            env=os.getenv("APP_ENV", cls.env),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            host=os.getenv("HOST", cls.host),
            port=int(os.getenv("PORT", str(cls.port))),
            cors_allow_origins=os.getenv("CORS_ALLOW_ORIGINS", cls.cors_allow_origins),
            working_directory=_env_path("REPO_PATH"),
            assistant_command=os.getenv("ASSISTANT_COMMAND", cls.assistant_command),
            skip_permissions=_env_bool("SKIP_PERMISSIONS", cls.skip_permissions),
            remote_exec_prefix=os.getenv("ASSISTANT_REMOTE_PREFIX", cls.remote_exec_prefix),
            idle_timeout_seconds=float(
                os.getenv("IDLE_TIMEOUT_SECONDS", str(cls.idle_timeout_seconds))
            ),
            grace_period_seconds=float(
                os.getenv("GRACE_PERIOD_SECONDS", str(cls.grace_period_seconds))
            ),
            output_buffer_bytes=int(
                os.getenv("OUTPUT_BUFFER_BYTES", str(cls.output_buffer_bytes))
            ),
            client_queue_size=int(
                os.getenv("SSE_CLIENT_QUEUE_SIZE", str(cls.client_queue_size))
            ),
            sse_keepalive_seconds=float(
                os.getenv("SSE_KEEPALIVE_SECONDS", str(cls.sse_keepalive_seconds))
            ),
            sse_poll_seconds=float(os.getenv("SSE_POLL_SECONDS", str(cls.sse_poll_seconds))),
            status_recent_output_chars=int(
                os.getenv("STATUS_RECENT_OUTPUT_CHARS", str(cls.status_recent_output_chars))
            ),
            tool_profiles_file=_env_path("TOOL_PROFILES_FILE"),
            web_path=_env_path("WEB_PATH"),
        )

    def default_working_directory(self) -> Path:
        """Working directory used when a request does not name one."""
        if self.working_directory is not None:
            return self.working_directory
        return Path.cwd()

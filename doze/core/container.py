"""Composition layer: build and hold the long-lived session objects for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass

from doze.core.config import Settings
from doze.session.hub import EventHub
from doze.session.machine import Session
from doze.session.output_buffer import OutputBuffer
from doze.session.process import AssistantCommand, ProcessLauncher, build_launcher
from doze.session.scheduler import Scheduler, ThreadingScheduler
from doze.session.tools import ToolProfiles
from doze.session.vcs import detect_file_changes


@dataclass
class AppContainer:
    """Container object attached to FastAPI app state."""

    settings: Settings
    buffer: OutputBuffer
    hub: EventHub
    tools: ToolProfiles
    session: Session


def build_container(
    settings: Settings,
    *,
    launcher: ProcessLauncher | None = None,
    scheduler: Scheduler | None = None,
) -> AppContainer:
    """Construct runtime dependencies in one place."""
    buffer = OutputBuffer(capacity=settings.output_buffer_bytes)
    hub = EventHub(queue_size=settings.client_queue_size)
    tools = ToolProfiles(profiles_file=settings.tool_profiles_file)
    session = Session(
        launcher=launcher or build_launcher(settings.remote_exec_prefix),
        command=AssistantCommand(
            executable=settings.assistant_command,
            skip_permissions=settings.skip_permissions,
        ),
        buffer=buffer,
        hub=hub,
        scheduler=scheduler or ThreadingScheduler(),
        tools=tools,
        default_working_directory=settings.default_working_directory,
        idle_timeout_seconds=settings.idle_timeout_seconds,
        grace_period_seconds=settings.grace_period_seconds,
        file_change_detector=detect_file_changes,
    )
    return AppContainer(
        settings=settings,
        buffer=buffer,
        hub=hub,
        tools=tools,
        session=session,
    )

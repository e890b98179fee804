"""Test fixtures shared by unit/integration tests."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest

from doze.session.hub import EventHub, StreamClient
from doze.session.machine import Session
from doze.session.output_buffer import OutputBuffer
from doze.session.process import AssistantCommand
from doze.session.tools import ToolProfiles
from doze.tests.fakes import FakeChangeDetector, FakeLauncher, ManualScheduler


@dataclass
class SessionHarness:
    session: Session
    launcher: FakeLauncher
    scheduler: ManualScheduler
    buffer: OutputBuffer
    hub: EventHub
    client: StreamClient
    workdir: Path
    detector: FakeChangeDetector


@pytest.fixture
def harness(tmp_path: Path):
    """Session wired to a fake process launcher and a manual clock (30s idle, 10s grace)."""
    launcher = FakeLauncher()
    scheduler = ManualScheduler()
    buffer = OutputBuffer(capacity=1024)
    hub = EventHub(queue_size=100)
    detector = FakeChangeDetector()
    session = Session(
        launcher=launcher,
        command=AssistantCommand(),
        buffer=buffer,
        hub=hub,
        scheduler=scheduler,
        tools=ToolProfiles(),
        default_working_directory=lambda: tmp_path,
        idle_timeout_seconds=30,
        grace_period_seconds=10,
        file_change_detector=detector,
    )
    client = hub.subscribe()
    try:
        yield SessionHarness(
            session=session,
            launcher=launcher,
            scheduler=scheduler,
            buffer=buffer,
            hub=hub,
            client=client,
            workdir=tmp_path,
            detector=detector,
        )
    finally:
        launcher.close_all()

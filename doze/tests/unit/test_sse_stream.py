"""Unit tests for SSE framing, reconnect replay and live relay."""

from __future__ import annotations

import asyncio
import json

from doze.api.stream.sse import KEEPALIVE_FRAME, event_frames, format_sse
from doze.session.events import output_event, state_event


def _parse(frame: str) -> tuple[str, dict]:
    event_line, data_line = frame.strip("\n").split("\n")
    assert event_line.startswith("event: ")
    assert data_line.startswith("data: ")
    return event_line[len("event: ") :], json.loads(data_line[len("data: ") :])


def _collect(session, hub, *, count: int, disconnect_after: int | None = None, **kwargs) -> list[str]:
    async def run() -> list[str]:
        frames: list[str] = []
        polls = 0

        async def is_disconnected() -> bool:
            nonlocal polls
            polls += 1
            return disconnect_after is not None and polls > disconnect_after

        generator = event_frames(session=session, hub=hub, is_disconnected=is_disconnected, **kwargs)
        try:
            async for frame in generator:
                frames.append(frame)
                if len(frames) == count:
                    break
        finally:
            await generator.aclose()
        return frames

    return asyncio.run(run())


def test_format_sse_frame() -> None:
    frame = format_sse(state_event("active"))
    assert frame.endswith("\n\n")
    assert _parse(frame) == ("state", {"type": "state", "state": "active"})


def test_reconnect_replays_buffer_then_state(harness) -> None:
    harness.session.start()
    harness.buffer.write("Hello world")

    frames = _collect(harness.session, harness.hub, count=2)

    assert _parse(frames[0]) == ("output", {"type": "output", "content": "Hello world"})
    assert _parse(frames[1]) == ("state", {"type": "state", "state": "waiting"})


def test_empty_buffer_sends_state_only(harness) -> None:
    frames = _collect(harness.session, harness.hub, count=1)

    assert _parse(frames[0]) == ("state", {"type": "state", "state": "none"})


def test_live_events_follow_replay_and_unsubscribe_on_close(harness) -> None:
    harness.hub.unsubscribe(harness.client.client_id)
    before = harness.hub.client_count()

    async def run() -> list[str]:
        frames: list[str] = []

        async def is_disconnected() -> bool:
            return False

        generator = event_frames(
            session=harness.session,
            hub=harness.hub,
            is_disconnected=is_disconnected,
            poll_seconds=0.01,
        )
        try:
            frames.append(await generator.__anext__())
            assert harness.hub.client_count() == before + 1
            harness.hub.broadcast(output_event("live"))
            harness.hub.broadcast(state_event("active"))
            frames.append(await generator.__anext__())
            frames.append(await generator.__anext__())
        finally:
            await generator.aclose()
        return frames

    frames = asyncio.run(run())

    assert [_parse(frame)[0] for frame in frames] == ["state", "output", "state"]
    assert _parse(frames[1])[1]["content"] == "live"
    assert harness.hub.client_count() == before


def test_keepalive_when_quiet(harness) -> None:
    frames = _collect(
        harness.session,
        harness.hub,
        count=2,
        poll_seconds=0.01,
        keepalive_seconds=0.02,
    )

    assert frames[1] == KEEPALIVE_FRAME


def test_disconnect_ends_stream(harness) -> None:
    frames = _collect(harness.session, harness.hub, count=10, disconnect_after=2, poll_seconds=0.01)

    assert len(frames) == 1
    assert harness.hub.client_count() == 1

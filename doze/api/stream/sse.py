"""Stream API layer: SSE endpoint with buffer replay, live fan-out and heartbeat."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from doze.api.deps import get_container
from doze.core.container import AppContainer
from doze.session.events import StreamEvent, output_event, state_event
from doze.session.hub import EventHub
from doze.session.machine import Session

router = APIRouter(tags=["stream"])

KEEPALIVE_FRAME = ": keep-alive\n\n"


def format_sse(event: StreamEvent) -> str:
    body = json.dumps(event.wire_payload(), ensure_ascii=False)
    return f"event: {event.event}\ndata: {body}\n\n"


async def event_frames(
    *,
    session: Session,
    hub: EventHub,
    is_disconnected: Callable[[], Awaitable[bool]],
    poll_seconds: float = 0.1,
    keepalive_seconds: float = 15.0,
) -> AsyncIterator[str]:
    """Replay buffered output and current state, then relay live events until disconnect."""
    client = hub.subscribe()
    try:
        recent, state = session.replay()
        if recent:
            yield format_sse(output_event(recent))
        yield format_sse(state_event(state.value))

        quiet = 0.0
        while not client.closed.is_set():
            if await is_disconnected():
                break
            event = client.next_event()
            if event is None:
                await asyncio.sleep(poll_seconds)
                quiet += poll_seconds
                if quiet >= keepalive_seconds:
                    quiet = 0.0
                    yield KEEPALIVE_FRAME
                continue
            quiet = 0.0
            while event is not None:
                yield format_sse(event)
                event = client.next_event()
    finally:
        hub.unsubscribe(client.client_id)


@router.get("/stream")
async def stream(
    request: Request,
    container: AppContainer = Depends(get_container),
) -> StreamingResponse:
    frames = event_frames(
        session=container.session,
        hub=container.hub,
        is_disconnected=request.is_disconnected,
        poll_seconds=container.settings.sse_poll_seconds,
        keepalive_seconds=container.settings.sse_keepalive_seconds,
    )
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )

"""Event layer: registry of streaming clients with non-blocking fan-out."""

from __future__ import annotations

import queue
from dataclasses import dataclass, field
from threading import Event, Lock
from uuid import uuid4

from doze.infra.observability.logger import get_logger
from doze.session.events import StreamEvent

logger = get_logger(__name__)


@dataclass
class StreamClient:
    """One connected consumer of the event feed."""

    client_id: str
    events: "queue.Queue[StreamEvent]"
    closed: Event = field(default_factory=Event)
    dropped: int = 0

    def next_event(self) -> StreamEvent | None:
        try:
            return self.events.get_nowait()
        except queue.Empty:
            return None


class EventHub:
    """Fan events out to every registered client; slow clients lose events, never stall others."""

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = max(1, queue_size)
        self._clients: dict[str, StreamClient] = {}
        self._lock = Lock()

    def subscribe(self) -> StreamClient:
        client = StreamClient(
            client_id=f"c_{uuid4().hex[:12]}",
            events=queue.Queue(maxsize=self._queue_size),
        )
        with self._lock:
            self._clients[client.client_id] = client
            total = len(self._clients)
        logger.info("hub.subscribe client_id=%s clients=%s", client.client_id, total)
        return client

    def unsubscribe(self, client_id: str) -> bool:
        """Remove one client; return False when it was already gone."""
        with self._lock:
            client = self._clients.pop(client_id, None)
            total = len(self._clients)
        if client is None:
            return False
        client.closed.set()
        logger.info(
            "hub.unsubscribe client_id=%s dropped=%s clients=%s",
            client_id,
            client.dropped,
            total,
        )
        return True

    def broadcast(self, event: StreamEvent) -> int:
        """Enqueue event for every client without blocking; return delivered count."""
        delivered = 0
        # put_nowait never blocks, so holding the lock keeps per-client order intact.
        with self._lock:
            for client in self._clients.values():
                try:
                    client.events.put_nowait(event)
                except queue.Full:
                    client.dropped += 1
                    logger.warning(
                        "hub.client_full client_id=%s event=%s dropped=%s",
                        client.client_id,
                        event.event,
                        client.dropped,
                    )
                    continue
                delivered += 1
        return delivered

    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

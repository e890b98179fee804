"""Session layer: fixed-capacity ring of recent assistant output for reconnecting clients."""

from __future__ import annotations

from threading import Lock


class OutputBuffer:
    """Keep the most recent `capacity` bytes; newer writes evict the oldest bytes."""

    def __init__(self, capacity: int = 10 * 1024) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._data = bytearray(capacity)
        self._write_pos = 0
        self._full = False
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def write(self, payload: bytes | str) -> int:
        """Append payload, overwriting the oldest bytes once full. Never fails."""
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        size = len(payload)
        if size == 0:
            return 0
        with self._lock:
            if size >= self._capacity:
                # Only the tail can survive; lay it out as an already wrapped ring.
                self._data[:] = payload[-self._capacity :]
                self._write_pos = 0
                self._full = True
                return size
            end = self._write_pos + size
            if end <= self._capacity:
                self._data[self._write_pos : end] = payload
            else:
                head = self._capacity - self._write_pos
                self._data[self._write_pos :] = payload[:head]
                self._data[: size - head] = payload[head:]
            if end >= self._capacity:
                self._full = True
            self._write_pos = end % self._capacity
            return size

    def snapshot(self) -> bytes:
        """Return retained bytes oldest first."""
        with self._lock:
            if not self._full:
                return bytes(self._data[: self._write_pos])
            return bytes(self._data[self._write_pos :] + self._data[: self._write_pos])

    def text(self) -> str:
        # A wrapped ring can start mid-character.
        return self.snapshot().decode("utf-8", errors="replace")

    def clear(self) -> None:
        with self._lock:
            self._write_pos = 0
            self._full = False

    def __len__(self) -> int:
        with self._lock:
            return self._capacity if self._full else self._write_pos

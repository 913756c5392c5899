"""Bounded hand-off between the spooler thread and the dispatcher."""

from __future__ import annotations

import queue
import threading

from ingex.constants import DEFAULT_CHANNEL_SIZE
from ingex.models import RawRow

_POLL_SECONDS = 0.1


class ChannelClosed(Exception):
    """Raised by ``receive`` once the channel is closed and fully drained."""


class RowChannel:
    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        self._queue: queue.Queue[RawRow] = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, row: RawRow, cancel: threading.Event) -> bool:
        """Block until the row is queued. Returns False if cancelled first."""
        while not cancel.is_set():
            try:
                self._queue.put(row, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def close(self) -> None:
        self._closed.set()

    def receive(self, timeout: float = _POLL_SECONDS) -> RawRow | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            # Producer closes only after its last put, so empty + closed is final.
            if self._closed.is_set() and self._queue.empty():
                raise ChannelClosed from None
            return None

    def qsize(self) -> int:
        return self._queue.qsize()

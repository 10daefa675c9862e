"""
Discovered-file channel between the watcher and the uploader.

The watcher pushes ready paths, the uploader pulls them. ``BoundedChannel``
blocks the producer while full; both sides give up once the channel is
closed or the caller's cancel event is set.
"""

from __future__ import annotations

import queue
import threading
from typing import Optional, Protocol

DEFAULT_CAPACITY = 100
POLL_INTERVAL = 0.1


class FileChannel(Protocol):
    """Push/pull/close capability used by the watcher and the uploader."""

    @property
    def closed(self) -> bool: ...

    def push(self, item: str, cancel: Optional[threading.Event] = None) -> bool: ...

    def pull(self, timeout: Optional[float] = None) -> Optional[str]: ...

    def close(self) -> None: ...


class BoundedChannel:
    """Thread-safe bounded FIFO of file paths."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._queue: "queue.Queue[str]" = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def push(self, item: str, cancel: Optional[threading.Event] = None) -> bool:
        """
        Block until ``item`` is accepted.

        Returns:
            True if accepted, False if the channel closed or ``cancel`` was set first
        """
        while not self._closed.is_set():
            if cancel is not None and cancel.is_set():
                return False
            try:
                self._queue.put(item, timeout=POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def pull(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Take the next item.

        Returns:
            The next path, or None on timeout or once closed and drained
        """
        if self._closed.is_set():
            try:
                return self._queue.get_nowait()
            except queue.Empty:
                return None

        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed.set()

    def __len__(self) -> int:
        return self._queue.qsize()

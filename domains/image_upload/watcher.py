"""
File system watcher for the image upload domain.

Monitors the configured folder for new or rewritten images and emits each
path once it has finished being written. Uses the watchdog library for
cross-platform file system event monitoring.
"""

import os
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from app.utils.helpers import has_supported_extension, normalise_path
from domains.image_upload.channel import BoundedChannel, FileChannel
from domains.image_upload.exceptions import WatchPathError

SETTLE_DELAY = 0.1
STABILITY_INTERVAL = 0.05
DEBOUNCE_WINDOW = 5.0
CLEANUP_INTERVAL = 30.0
DEBOUNCE_RETENTION = 300.0

_STOP = object()


class FileSample(NamedTuple):
    """Size and modification time of a file at one instant."""
    size: int
    mtime_ns: int


def sample_file(path: str) -> FileSample:
    """Stat ``path``. Raises OSError if it is gone."""
    stats = os.stat(path)
    return FileSample(stats.st_size, stats.st_mtime_ns)


def is_stable(first: FileSample, second: FileSample) -> bool:
    """A file is ready when two samples taken apart are identical."""
    return first.size == second.size and first.mtime_ns == second.mtime_ns


class ImageEventHandler(FileSystemEventHandler):
    """Forwards file create/modify/move-in paths to the watch engine."""

    def __init__(self, notify: Callable[[str], None]):
        """
        Initialize event handler.

        Args:
            notify: Called with the path of every candidate file event
        """
        super().__init__()
        self.notify = notify

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        if event.is_directory:
            return
        self.notify(os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification."""
        # Skip directory modifications (too noisy)
        if event.is_directory:
            return
        self.notify(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent):
        """Handle rename into place (e.g. tool writes foo.tmp then renames to foo.png)."""
        dest = getattr(event, "dest_path", None)
        if event.is_directory or not dest:
            return
        self.notify(os.fsdecode(dest))


class WatchEngine:
    """Turns raw filesystem notifications into a stream of ready image paths."""

    def __init__(
        self,
        watch_path: Path,
        supported_formats: Iterable[str],
        delete_after_upload: bool = False,
        *,
        recursive: bool = False,
        channel: Optional[FileChannel] = None,
        shutdown: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        """
        Initialize the watch engine.

        Args:
            watch_path: Folder to watch
            supported_formats: Dot-prefixed extensions, matched case-insensitively
            delete_after_upload: Whether delete() actually removes files
            recursive: Also watch subdirectories
            channel: Output channel; a bounded in-memory channel by default
            shutdown: Shared stop signal; a private one by default
            sleep: Replacement for the settle/stability waits (tests)
            clock: Monotonic clock used for debounce bookkeeping
            observer_factory: Builds the watchdog observer

        Raises:
            WatchPathError: If ``watch_path`` is not an existing directory
        """
        self.watch_path = normalise_path(Path(watch_path))
        if not self.watch_path.is_dir():
            raise WatchPathError(f"watch path does not exist: {self.watch_path}")

        self.supported_formats = {ext.lower() for ext in supported_formats}
        self.delete_after_upload = delete_after_upload
        self.recursive = recursive

        self._channel = channel if channel is not None else BoundedChannel()
        self._shutdown = shutdown if shutdown is not None else threading.Event()
        self._sleep = sleep
        self._clock = clock
        self._observer_factory = observer_factory

        self._raw_events: "queue.Queue[object]" = queue.Queue()
        self._processed: Dict[str, float] = {}
        self._processed_lock = threading.Lock()

        self._observer: Optional[Observer] = None
        self._threads: List[threading.Thread] = []
        self._state_lock = threading.Lock()
        self._stopped = False

    # Lifecycle -------------------------------------------------------------------

    def start(self):
        """
        Start the observer, the event loop and the debounce cleanup loop.

        Raises:
            WatchPathError: If the observer cannot watch the folder
        """
        logger.info(f"Starting file watcher for path: {self.watch_path}")

        observer = self._observer_factory()
        try:
            observer.schedule(
                ImageEventHandler(self._raw_events.put),
                str(self.watch_path),
                recursive=self.recursive,
            )
            observer.daemon = True
            observer.start()
        except OSError as e:
            raise WatchPathError(f"failed to watch {self.watch_path}: {e}") from e
        self._observer = observer

        self._threads = [
            threading.Thread(target=self._watch_loop, name="watcher-events", daemon=True),
            threading.Thread(target=self._cleanup_loop, name="watcher-cleanup", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

        logger.success(f"Started watching: {self.watch_path}")

    def stop(self):
        """Stop both loops, the observer and the output channel."""
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True

        logger.info("Stopping file watcher...")
        self._shutdown.set()

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)

        self._raw_events.put(_STOP)
        self._channel.close()

        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=5)

        logger.info("File watcher stopped")

    def events(self) -> FileChannel:
        """Channel of discovered, stable image paths."""
        return self._channel

    # Discovery -------------------------------------------------------------------

    def scan_existing(self) -> List[str]:
        """
        Find image files already present in the watched tree.

        Returns:
            Sorted list of matching file paths

        Raises:
            WatchPathError: If the tree cannot be walked
        """
        if not self.watch_path.is_dir():
            raise WatchPathError(f"watch path does not exist: {self.watch_path}")

        def _raise(error: OSError):
            raise error

        files = []
        try:
            for root, _dirs, names in os.walk(self.watch_path, onerror=_raise):
                for name in names:
                    path = os.path.join(root, name)
                    if os.path.isfile(path) and self.is_image_file(path):
                        files.append(path)
        except OSError as e:
            raise WatchPathError(f"failed to scan existing files: {e}") from e

        files.sort()
        logger.info(f"Found {len(files)} existing image files")
        return files

    def is_image_file(self, path: str) -> bool:
        return has_supported_extension(Path(path), self.supported_formats)

    def process_event(self, path: str) -> bool:
        """
        Run one create/write notification through filter, debounce and
        stability checks, emitting the path when the file is ready.

        Args:
            path: Path from the notification

        Returns:
            True if the path was emitted on the output channel
        """
        if not self.is_image_file(path) or not self.should_process(path):
            return False

        if not self._pause(SETTLE_DELAY):
            return False

        if not self.is_file_ready(path):
            logger.debug(f"File not ready yet, skipping event: {path}")
            return False

        self.mark_processed(path)
        logger.info(f"New image detected: {path}")

        if not self._channel.push(path, cancel=self._shutdown):
            logger.debug(f"Watcher stopping, dropped: {path}")
            return False
        return True

    def is_file_ready(self, path: str) -> bool:
        """Check that size and mtime hold still across a short interval."""
        try:
            first = sample_file(path)
        except OSError as e:
            logger.debug(f"Cannot stat {path}: {e}")
            return False

        if not self._pause(STABILITY_INTERVAL):
            return False

        try:
            second = sample_file(path)
        except OSError as e:
            logger.debug(f"Cannot stat {path}: {e}")
            return False

        return is_stable(first, second)

    # Debounce set ----------------------------------------------------------------

    def should_process(self, path: str) -> bool:
        """False if ``path`` was emitted within the debounce window."""
        with self._processed_lock:
            last = self._processed.get(path)
        return last is None or self._clock() - last > DEBOUNCE_WINDOW

    def mark_processed(self, path: str):
        with self._processed_lock:
            self._processed[path] = self._clock()

    def cleanup_old_entries(self) -> int:
        """
        Forget debounce entries older than the retention window.

        Returns:
            Number of entries removed
        """
        cutoff = self._clock() - DEBOUNCE_RETENTION
        with self._processed_lock:
            expired = [p for p, seen in self._processed.items() if seen < cutoff]
            for path in expired:
                del self._processed[path]
        return len(expired)

    # Deletion policy -------------------------------------------------------------

    def delete(self, path: str):
        """
        Remove an uploaded file when delete_after_upload is enabled.

        Raises:
            OSError: If removal fails
        """
        if not self.delete_after_upload:
            return

        os.remove(path)
        logger.info(f"Deleted file after upload: {path}")

    # Loops -----------------------------------------------------------------------

    def _watch_loop(self):
        while True:
            path = self._raw_events.get()
            if path is _STOP or self._shutdown.is_set():
                return

            try:
                self.process_event(path)
            except Exception as e:
                logger.warning(f"File watcher error on {path}: {e}")

    def _cleanup_loop(self):
        while not self._shutdown.wait(CLEANUP_INTERVAL):
            removed = self.cleanup_old_entries()
            if removed:
                logger.debug(f"Purged {removed} debounce entries")

    def _pause(self, seconds: float) -> bool:
        """Sleep without holding locks; False if shutdown arrived meanwhile."""
        if self._sleep is not None:
            self._sleep(seconds)
            return not self._shutdown.is_set()
        return not self._shutdown.wait(seconds)

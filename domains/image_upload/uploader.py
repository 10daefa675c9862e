"""
Upload coordinator for the image upload domain.

Owns the pending queue: admits discovered files that are not yet delivered,
drains the queue in batches on a timer, and reconciles each outcome into the
upload history (success) or back into the queue (failure).
"""

import os
import threading
import time
from collections import deque
from typing import Deque, List, Optional, Set

from loguru import logger

from app.utils.config import Settings
from app.utils.helpers import format_bytes
from domains.image_upload.delivery import Delivery
from domains.image_upload.exceptions import HistoryError, StartupError, WatchPathError
from domains.image_upload.history import UploadHistory
from domains.image_upload.retry import RequeueForever, RetryPolicy
from domains.image_upload.watcher import WatchEngine

INTAKE_POLL = 0.5


class Uploader:
    """Batches, paces and retries deliveries of discovered images."""

    def __init__(
        self,
        delivery: Delivery,
        watcher: WatchEngine,
        history: UploadHistory,
        *,
        batch_size: int = 5,
        interval_seconds: float = 10.0,
        max_file_size_bytes: int = 8 * 1024 * 1024,
        cleanup_missing_files: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
        shutdown: Optional[threading.Event] = None,
        clock=time.monotonic,
    ):
        self.delivery = delivery
        self.watcher = watcher
        self.history = history

        self.batch_size = batch_size
        self.interval_seconds = interval_seconds
        self.max_file_size_bytes = max_file_size_bytes
        self.cleanup_missing_files = cleanup_missing_files
        self.retry_policy = retry_policy or RequeueForever()

        self._queue: Deque[str] = deque()
        self._queue_lock = threading.Lock()
        self._in_flight: Set[str] = set()
        # Serializes whole drain ticks; never held together with _queue_lock by callers
        self._drain_lock = threading.Lock()

        self._shutdown = shutdown if shutdown is not None else threading.Event()
        self._clock = clock
        self._failures = 0
        self._retry_at: Optional[float] = None

        self._threads: List[threading.Thread] = []
        self._state_lock = threading.Lock()
        self._stopped = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        delivery: Delivery,
        watcher: WatchEngine,
        history: UploadHistory,
        **kwargs,
    ) -> "Uploader":
        return cls(
            delivery,
            watcher,
            history,
            batch_size=settings.upload.batch_size,
            interval_seconds=settings.upload.interval_seconds,
            max_file_size_bytes=settings.upload.max_file_size_bytes,
            cleanup_missing_files=settings.history.cleanup_missing_files,
            **kwargs,
        )

    # Lifecycle -------------------------------------------------------------------

    def start(self):
        """
        Queue existing files and start the drain and intake loops.

        Raises:
            StartupError: If the initial scan of the watched folder fails
        """
        logger.info("Starting uploader...")

        if self.cleanup_missing_files:
            try:
                removed = self.history.cleanup_missing()
                logger.info(f"Removed {removed} missing files from history")
            except HistoryError as e:
                logger.warning(f"Failed to cleanup missing files from history: {e}")

        try:
            existing = self.watcher.scan_existing()
        except WatchPathError as e:
            raise StartupError(f"failed to scan existing files: {e}") from e

        self.add_to_queue(*existing)

        self._threads = [
            threading.Thread(target=self._drain_loop, name="uploader-drain", daemon=True),
            threading.Thread(target=self._intake_loop, name="uploader-intake", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

        logger.success(
            f"Uploader started: batch size {self.batch_size}, every {self.interval_seconds}s"
        )

    def stop(self):
        """Stop both loops, then make one last attempt at whatever is queued."""
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True

        logger.info("Stopping uploader...")
        self._shutdown.set()

        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=30)

        self._process_remaining_queue()

    # Queue -----------------------------------------------------------------------

    def add_to_queue(self, *paths: str) -> int:
        """
        Admit files that exist, fit the size limit and were not yet delivered.

        Returns:
            Number of files added
        """
        admitted = []
        for path in paths:
            if not self._is_valid_file(path):
                continue
            if self.history.is_uploaded(path):
                logger.debug(f"Skipping already uploaded file: {path}")
                continue
            admitted.append(path)

        added = 0
        with self._queue_lock:
            for path in admitted:
                if path in self._queue or path in self._in_flight:
                    continue
                self._queue.append(path)
                added += 1

        if added:
            logger.info(f"Added {added} new files to queue")
        return added

    def queue_length(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def pending(self) -> List[str]:
        """Snapshot of the queue, front first."""
        with self._queue_lock:
            return list(self._queue)

    # Draining --------------------------------------------------------------------

    def upload_batch(self, ignore_backoff: bool = False) -> bool:
        """
        Deliver up to batch_size files from the front of the queue.

        A failed batch goes back to the front in its original order.

        Args:
            ignore_backoff: Drain even if the retry policy asked to wait

        Returns:
            True if a batch was delivered
        """
        with self._drain_lock:
            with self._queue_lock:
                if not self._queue:
                    return False
                if (
                    not ignore_backoff
                    and self._retry_at is not None
                    and self._clock() < self._retry_at
                ):
                    return False
                count = min(self.batch_size, len(self._queue))
                batch = [self._queue.popleft() for _ in range(count)]
                self._in_flight.update(batch)

            logger.info(f"Uploading batch of {len(batch)} files")

            try:
                if len(batch) == 1:
                    references = {batch[0]: self.delivery.deliver_one(batch[0])}
                else:
                    references = self.delivery.deliver_batch(batch)
            except Exception as e:
                self._handle_failed_batch(batch, e)
                return False

            self._failures = 0
            self._retry_at = None

            for path in batch:
                self._handle_successful_upload(path, (references or {}).get(path) or "")

            with self._queue_lock:
                self._in_flight.difference_update(batch)
            return True

    def _handle_failed_batch(self, batch: List[str], error: Exception):
        self._failures += 1
        target = batch[0] if len(batch) == 1 else f"batch of {len(batch)} files"

        if not self.retry_policy.should_retry(self._failures):
            logger.error(
                f"Failed to upload {target} after {self._failures} attempts, dropping: {error}"
            )
            self._failures = 0
            self._retry_at = None
            with self._queue_lock:
                self._in_flight.difference_update(batch)
            return

        with self._queue_lock:
            self._in_flight.difference_update(batch)
            self._queue.extendleft(reversed([path for path in batch if path not in self._queue]))

        delay = self.retry_policy.delay(self._failures)
        self._retry_at = self._clock() + delay if delay > 0 else None
        logger.error(f"Failed to upload {target} (attempt {self._failures}): {error}")

    def _handle_successful_upload(self, path: str, remote_reference: str):
        try:
            self.history.mark_uploaded(path, remote_reference)
        except HistoryError as e:
            logger.warning(f"Failed to mark file as uploaded in history: {e}")

        try:
            self.watcher.delete(path)
        except OSError as e:
            logger.warning(f"Failed to delete file after upload: {e}")

    def _process_remaining_queue(self):
        remaining = self.queue_length()
        if not remaining:
            return

        logger.info(f"Processing remaining {remaining} files in queue...")
        while self.queue_length():
            if not self.upload_batch(ignore_backoff=True):
                logger.warning(f"Shutting down with {self.queue_length()} files not uploaded")
                break

    # Loops -----------------------------------------------------------------------

    def _drain_loop(self):
        while not self._shutdown.wait(self.interval_seconds):
            try:
                self.upload_batch()
            except Exception as e:
                logger.error(f"Upload tick failed: {e}")

    def _intake_loop(self):
        channel = self.watcher.events()
        while not self._shutdown.is_set():
            path = channel.pull(timeout=INTAKE_POLL)
            if path is None:
                if channel.closed:
                    return
                continue
            self.add_to_queue(path)

    # Checks ----------------------------------------------------------------------

    def _is_valid_file(self, path: str) -> bool:
        try:
            size = os.stat(path).st_size
        except OSError as e:
            logger.warning(f"Cannot stat file {path}: {e}")
            return False

        if size > self.max_file_size_bytes:
            logger.warning(
                f"File {path} is too large ({format_bytes(size)}, max: "
                f"{format_bytes(self.max_file_size_bytes)})"
            )
            return False

        return True

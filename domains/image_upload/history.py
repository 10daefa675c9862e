"""
Upload history for the image upload domain.

Records which file contents were already delivered so restarts and repeated
filesystem events never upload the same bytes twice. The ledger is a JSON
object keyed by path and rewritten in full on every change.
"""

import json
from pathlib import Path
from typing import Dict, Optional

from loguru import logger
from pydantic import ValidationError

from app.models.schemas import UploadRecord
from app.utils.helpers import fingerprint_file, now_utc
from domains.image_upload.exceptions import HistoryError
from domains.image_upload.locks import ReadWriteLock


class UploadHistory:
    """Persistent, content-addressed ledger of delivered files."""

    def __init__(self, history_file: Path):
        """
        Load the ledger from disk.

        Args:
            history_file: JSON file holding the ledger; created on first write

        Raises:
            HistoryError: If the file exists but cannot be read or parsed
        """
        self.history_file = Path(history_file)
        self._records: Dict[str, UploadRecord] = {}
        self._lock = ReadWriteLock()

        self._load()
        logger.info(f"Loaded {len(self._records)} upload records from history")

    def is_uploaded(self, path: str) -> bool:
        """
        Check whether the current content of ``path`` was already delivered.

        Any failure to read the file counts as "not uploaded" so the file gets
        another delivery attempt rather than being skipped silently.

        Args:
            path: File path

        Returns:
            True only if a record exists and its hash and size match the file
        """
        try:
            content_hash, size = fingerprint_file(Path(path))
        except OSError as e:
            logger.debug(f"Cannot fingerprint {path}: {e}")
            return False

        with self._lock.read():
            record = self._records.get(str(path))

        return record is not None and record.matches(content_hash, size)

    def mark_uploaded(self, path: str, remote_reference: str = "") -> UploadRecord:
        """
        Record the current content of ``path`` as delivered and persist.

        Args:
            path: File path
            remote_reference: Optional destination identifier (e.g. attachment URL)

        Returns:
            The stored record

        Raises:
            HistoryError: If the file cannot be fingerprinted or the ledger
                cannot be written. In the latter case the in-memory record is
                already updated and the next successful write persists it.
        """
        try:
            content_hash, size = fingerprint_file(Path(path))
        except OSError as e:
            raise HistoryError(f"failed to fingerprint {path}: {e}") from e

        record = UploadRecord(
            path=str(path),
            content_hash=content_hash,
            size_bytes=size,
            uploaded_at=now_utc(),
            remote_reference=remote_reference or "",
        )

        with self._lock.write():
            self._records[record.path] = record
            self._save()

        return record

    def remove_record(self, path: str) -> None:
        """Forget ``path`` and persist."""
        with self._lock.write():
            self._records.pop(str(path), None)
            self._save()

    def cleanup_missing(self) -> int:
        """
        Drop records whose file no longer exists on disk.

        Returns:
            Number of records removed
        """
        with self._lock.write():
            missing = [p for p in self._records if not Path(p).exists()]
            for path in missing:
                del self._records[path]
                logger.info(f"Removed missing file from history: {path}")

            if missing:
                self._save()

        return len(missing)

    def upload_count(self) -> int:
        """Number of records in the ledger."""
        with self._lock.read():
            return len(self._records)

    def get_record(self, path: str) -> Optional[UploadRecord]:
        with self._lock.read():
            return self._records.get(str(path))

    def _load(self):
        try:
            raw = self.history_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except (OSError, UnicodeDecodeError) as e:
            raise HistoryError(f"failed to read history file {self.history_file}: {e}") from e

        if not raw.strip():
            return

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object keyed by file path")
            self._records = {
                path: UploadRecord.model_validate(entry) for path, entry in data.items()
            }
        except (ValueError, ValidationError) as e:
            raise HistoryError(f"failed to parse history file {self.history_file}: {e}") from e

    def _save(self):
        """Write the full ledger atomically. Caller holds the write lock."""
        payload = {path: record.to_json_ready() for path, record in self._records.items()}
        tmp_path = self.history_file.with_name(self.history_file.name + ".tmp")

        try:
            self.history_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
            tmp_path.replace(self.history_file)
        except OSError as e:
            raise HistoryError(f"failed to save history to {self.history_file}: {e}") from e

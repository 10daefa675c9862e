"""
Helper utilities for the image uploader.

Common functions used across domains.
"""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Tuple

HASH_CHUNK_SIZE = 1024 * 1024


def hash_file(path: Path) -> str:
    """Generate SHA256 hash of a file's bytes, streamed in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def fingerprint_file(path: Path) -> Tuple[str, int]:
    """
    Compute the (hash, size) pair that identifies a file's content.

    Args:
        path: File path

    Returns:
        Tuple of SHA256 hex digest and size in bytes

    Raises:
        OSError: If the file cannot be stat'ed or read
    """
    size = Path(path).stat().st_size
    return hash_file(path), size


def has_supported_extension(path: Path, supported_formats: Iterable[str]) -> bool:
    """Check a path's extension against dot-prefixed formats, ignoring case."""
    return Path(path).suffix.lower() in {ext.lower() for ext in supported_formats}


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""
    try:
        return Path(path).expanduser().resolve()
    except (FileNotFoundError, RuntimeError):
        return Path(path).expanduser().absolute()


def now_utc() -> datetime:
    """Get current timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def format_bytes(bytes_count: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"

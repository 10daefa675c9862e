"""
Pydantic models for the image uploader.

Shared data models across the application.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# =====================================================
# Upload History Models
# =====================================================

class UploadRecord(BaseModel):
    """
    One successfully delivered file.

    Serialized with the history file's JSON keys (file_path, file_hash, ...)
    so existing ledgers keep loading.
    """
    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(alias="file_path")
    content_hash: str = Field(alias="file_hash", description="SHA-256 hex digest of the delivered bytes")
    size_bytes: int = Field(alias="file_size", ge=0)
    uploaded_at: datetime
    remote_reference: str = Field(default="", alias="discord_url")

    def matches(self, content_hash: str, size_bytes: int) -> bool:
        """True when the given fingerprint is exactly the delivered one."""
        return self.content_hash == content_hash and self.size_bytes == size_bytes

    def to_json_ready(self) -> Dict[str, Any]:
        """Return the JSON payload stored in the history file."""
        return self.model_dump(mode="json", by_alias=True, exclude_defaults=True)


# =====================================================
# API Response Models
# =====================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    version: str
    running: bool
    queue_length: int
    upload_count: int
    watch_path: Optional[str] = None
    delivery_mode: Optional[str] = None


class ServiceInfo(BaseModel):
    """Root endpoint payload."""
    service: str
    version: str
    status: str
    health: str = "/health"

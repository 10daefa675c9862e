"""
Configuration management for the image uploader.

Uses pydantic-settings to load configuration from a JSON file, environment
variables and .env files. Environment variables override the file and use the
DISCORD_UPLOADER_ prefix with "__" between nested keys, e.g.
DISCORD_UPLOADER_UPLOAD__BATCH_SIZE=3.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple, Type

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_CONFIG_PATH = Path("config/config.json")
DEFAULT_SUPPORTED_FORMATS = [".png", ".jpg", ".jpeg", ".gif", ".webp"]

# Discord rejects messages with more than 10 attachments
MAX_ATTACHMENTS_PER_MESSAGE = 10


class DiscordSettings(BaseModel):
    """Delivery destination: either a webhook or a bot token + channel."""

    webhook_url: str = ""
    token: str = ""
    channel_id: str = ""
    test_message: str = "Test connection from Discord Image Uploader"
    send_test_message: bool = False

    @field_validator("test_message")
    @classmethod
    def _default_test_message(cls, value: str) -> str:
        return value or "Test connection from Discord Image Uploader"

    @property
    def uses_webhook(self) -> bool:
        return bool(self.webhook_url)


class WatcherSettings(BaseModel):
    """Watched folder and what counts as an image."""

    folder_path: Optional[Path] = None
    supported_formats: List[str] = DEFAULT_SUPPORTED_FORMATS
    delete_after_upload: bool = False
    recursive: bool = False

    @field_validator("supported_formats")
    @classmethod
    def _normalise_formats(cls, value: List[str]) -> List[str]:
        formats = []
        for ext in value:
            ext = ext.strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            formats.append(ext)
        return formats or list(DEFAULT_SUPPORTED_FORMATS)


class UploadSettings(BaseModel):
    """Batching and pacing of deliveries."""

    batch_size: int = 5
    interval_seconds: float = 10
    max_file_size_mb: int = 8

    @field_validator("batch_size")
    @classmethod
    def _batch_size(cls, value: int) -> int:
        if value <= 0:
            return 5
        return min(value, MAX_ATTACHMENTS_PER_MESSAGE)

    @field_validator("interval_seconds")
    @classmethod
    def _interval(cls, value: float) -> float:
        return value if value > 0 else 10

    @field_validator("max_file_size_mb")
    @classmethod
    def _max_size(cls, value: int) -> int:
        return value if value > 0 else 8

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


class HistorySettings(BaseModel):
    """Where the upload ledger lives."""

    file_path: Path = Path("data/upload_history.json")
    cleanup_missing_files: bool = False

    @field_validator("file_path", mode="before")
    @classmethod
    def _default_path(cls, value):
        return value or Path("data/upload_history.json")


class Settings(BaseSettings):
    """Application settings loaded from the config file and environment."""

    discord: DiscordSettings = DiscordSettings()
    watcher: WatcherSettings = WatcherSettings()
    upload: UploadSettings = UploadSettings()
    history: HistorySettings = HistorySettings()

    # API / process configuration
    log_level: str = "INFO"
    api_port: int = 8000
    api_title: str = "Discord Image Uploader"
    api_version: str = "1.0.0"

    model_config = SettingsConfigDict(
        env_prefix="DISCORD_UPLOADER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Environment variables take precedence over the JSON file."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _validate_required(self) -> "Settings":
        if not self.discord.webhook_url and not self.discord.token:
            raise ValueError("either discord webhook URL or bot token is required")

        if self.discord.token and not self.discord.channel_id:
            raise ValueError("discord channel ID is required when using bot token")

        if not self.watcher.folder_path:
            raise ValueError("watcher folder path is required")

        return self


def load_settings(config_path: Optional[Path] = None, **overrides) -> Settings:
    """
    Load settings from a JSON config file plus environment.

    Args:
        config_path: Path to the JSON config file
        **overrides: Values that take precedence over every other source

    Returns:
        Validated Settings instance

    Raises:
        FileNotFoundError: If the config file does not exist
        pydantic.ValidationError: If validation fails
    """
    config_path = Path(config_path or DEFAULT_CONFIG_PATH).expanduser()
    if not config_path.is_file():
        raise FileNotFoundError(f"config file not found: {config_path}")

    class _FileSettings(Settings):
        model_config = SettingsConfigDict(json_file=config_path, json_file_encoding="utf-8")

    return _FileSettings(**overrides)


@lru_cache()
def get_settings(config_path: Optional[Path] = None) -> Settings:
    """Get cached settings instance."""
    return load_settings(config_path)

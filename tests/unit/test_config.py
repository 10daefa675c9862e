import json
import os

import pytest
from pydantic import ValidationError

from app.utils.config import load_settings


def write_config(tmp_path, payload):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(payload))
    return path


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.upper().startswith("DISCORD_UPLOADER_"):
            monkeypatch.delenv(key)


def test_defaults_are_applied(tmp_path):
    path = write_config(
        tmp_path,
        {
            "discord": {"webhook_url": "https://discord.test/hook"},
            "watcher": {"folder_path": str(tmp_path)},
            "upload": {"batch_size": 0, "interval_seconds": -1},
        },
    )

    settings = load_settings(path)

    assert settings.discord.uses_webhook
    assert settings.watcher.supported_formats == [".png", ".jpg", ".jpeg", ".gif", ".webp"]
    assert settings.upload.batch_size == 5
    assert settings.upload.interval_seconds == 10
    assert settings.upload.max_file_size_bytes == 8 * 1024 * 1024
    assert str(settings.history.file_path) == "data/upload_history.json"
    assert settings.discord.test_message == "Test connection from Discord Image Uploader"


def test_formats_are_normalised_and_batch_size_capped(tmp_path):
    path = write_config(
        tmp_path,
        {
            "discord": {"webhook_url": "https://discord.test/hook"},
            "watcher": {"folder_path": str(tmp_path), "supported_formats": ["PNG", ".JPG"]},
            "upload": {"batch_size": 50},
        },
    )

    settings = load_settings(path)

    assert settings.watcher.supported_formats == [".png", ".jpg"]
    assert settings.upload.batch_size == 10


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = write_config(
        tmp_path,
        {
            "discord": {"webhook_url": "https://discord.test/hook"},
            "watcher": {"folder_path": str(tmp_path)},
            "upload": {"batch_size": 5, "interval_seconds": 20},
        },
    )
    monkeypatch.setenv("DISCORD_UPLOADER_UPLOAD__BATCH_SIZE", "3")

    settings = load_settings(path)

    assert settings.upload.batch_size == 3
    assert settings.upload.interval_seconds == 20


def test_missing_credentials_are_rejected(tmp_path):
    path = write_config(tmp_path, {"watcher": {"folder_path": str(tmp_path)}})

    with pytest.raises(ValidationError, match="webhook URL or bot token"):
        load_settings(path)


def test_bot_token_requires_channel(tmp_path):
    path = write_config(
        tmp_path,
        {"discord": {"token": "abc"}, "watcher": {"folder_path": str(tmp_path)}},
    )

    with pytest.raises(ValidationError, match="channel ID"):
        load_settings(path)


def test_folder_path_is_required(tmp_path):
    path = write_config(tmp_path, {"discord": {"webhook_url": "https://discord.test/hook"}})

    with pytest.raises(ValidationError, match="folder path"):
        load_settings(path)


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "missing.json")

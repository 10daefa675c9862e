from typing import Dict, List, Sequence

import pytest

from domains.image_upload.channel import BoundedChannel
from domains.image_upload.exceptions import DeliveryError
from domains.image_upload.history import UploadHistory
from domains.image_upload.watcher import WatchEngine


class FakeDelivery:
    """In-memory transport that records calls and can fail on demand."""

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.calls: List[List[str]] = []
        self.closed = False

    def _attempt(self, paths: Sequence[str]):
        self.calls.append(list(paths))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise DeliveryError("discord unavailable")

    def deliver_one(self, path: str) -> str:
        self._attempt([path])
        return f"https://cdn.example/{path.rsplit('/', 1)[-1]}"

    def deliver_batch(self, paths: Sequence[str]) -> Dict[str, str]:
        self._attempt(paths)
        return {}

    def test_connection(self):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def watch_dir(tmp_path):
    folder = tmp_path / "watched"
    folder.mkdir()
    return folder.resolve()


@pytest.fixture
def history(tmp_path):
    return UploadHistory(tmp_path / "data" / "upload_history.json")


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def watcher(watch_dir):
    return WatchEngine(
        watch_dir,
        [".png", ".jpg"],
        channel=BoundedChannel(),
        sleep=lambda seconds: None,
    )


@pytest.fixture
def make_delivery():
    return FakeDelivery

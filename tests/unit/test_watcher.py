import threading

import pytest

from domains.image_upload.channel import BoundedChannel
from domains.image_upload.exceptions import WatchPathError
from domains.image_upload.watcher import (
    DEBOUNCE_WINDOW,
    STABILITY_INTERVAL,
    FileSample,
    ImageEventHandler,
    WatchEngine,
    is_stable,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class Event:
    def __init__(self, src, dest=None, is_directory=False):
        self.src_path = str(src)
        self.dest_path = str(dest) if dest else None
        self.is_directory = is_directory


def make_engine(watch_dir, **kwargs):
    kwargs.setdefault("sleep", lambda seconds: None)
    kwargs.setdefault("channel", BoundedChannel())
    return WatchEngine(watch_dir, [".png", ".jpg"], **kwargs)


def test_is_stable_requires_identical_samples():
    assert is_stable(FileSample(10, 5), FileSample(10, 5))
    assert not is_stable(FileSample(10, 5), FileSample(11, 5))
    assert not is_stable(FileSample(10, 5), FileSample(10, 6))


def test_missing_watch_path_raises(tmp_path):
    with pytest.raises(WatchPathError):
        WatchEngine(tmp_path / "missing", [".png"])


def test_stable_image_is_emitted(watch_dir):
    engine = make_engine(watch_dir)
    image = watch_dir / "a.png"
    image.write_bytes(b"abc")

    assert engine.process_event(str(image))
    assert engine.events().pull(timeout=0) == str(image)


def test_extension_match_is_case_insensitive(watch_dir):
    engine = make_engine(watch_dir)
    upper = watch_dir / "SHOT.PNG"
    text = watch_dir / "notes.txt"
    upper.write_bytes(b"1")
    text.write_bytes(b"2")

    assert engine.process_event(str(upper))
    assert not engine.process_event(str(text))
    assert len(engine.events()) == 1


def test_file_still_being_written_is_not_emitted(watch_dir):
    image = watch_dir / "growing.png"
    image.write_bytes(b"a")

    def writer_sleep(seconds):
        # The writer appends between the two stability samples
        if seconds == STABILITY_INTERVAL:
            with open(image, "ab") as handle:
                handle.write(b"more bytes")

    engine = make_engine(watch_dir, sleep=writer_sleep)

    assert not engine.process_event(str(image))
    assert len(engine.events()) == 0


def test_file_deleted_mid_check_is_dropped(watch_dir):
    image = watch_dir / "gone.png"
    image.write_bytes(b"a")

    def deleting_sleep(seconds):
        if seconds == STABILITY_INTERVAL and image.exists():
            image.unlink()

    engine = make_engine(watch_dir, sleep=deleting_sleep)

    assert not engine.process_event(str(image))


def test_repeated_events_are_debounced(watch_dir):
    clock = FakeClock()
    engine = make_engine(watch_dir, clock=clock)
    image = watch_dir / "a.png"
    image.write_bytes(b"abc")

    assert engine.process_event(str(image))
    clock.now += 1
    assert not engine.process_event(str(image))

    clock.now += DEBOUNCE_WINDOW
    assert engine.process_event(str(image))
    assert len(engine.events()) == 2


def test_cleanup_purges_old_debounce_entries(watch_dir):
    clock = FakeClock()
    engine = make_engine(watch_dir, clock=clock)
    engine.mark_processed("old.png")
    clock.now += 200
    engine.mark_processed("recent.png")
    clock.now += 150

    assert engine.cleanup_old_entries() == 1
    assert engine.cleanup_old_entries() == 0

    clock.now += 200
    assert engine.cleanup_old_entries() == 1


def test_scan_existing_walks_tree_and_filters(watch_dir):
    nested = watch_dir / "nested"
    nested.mkdir()
    (watch_dir / "b.jpg").write_bytes(b"1")
    (watch_dir / "a.png").write_bytes(b"1")
    (nested / "c.PNG").write_bytes(b"1")
    (watch_dir / "readme.md").write_bytes(b"1")

    engine = make_engine(watch_dir)
    root = engine.watch_path

    assert engine.scan_existing() == sorted(
        [str(root / "a.png"), str(root / "b.jpg"), str(root / "nested" / "c.PNG")]
    )


def test_scan_existing_fails_when_root_disappears(watch_dir):
    engine = make_engine(watch_dir)
    watch_dir.rmdir()

    with pytest.raises(WatchPathError):
        engine.scan_existing()


def test_delete_respects_policy(watch_dir):
    image = watch_dir / "a.png"
    image.write_bytes(b"abc")

    make_engine(watch_dir).delete(str(image))
    assert image.exists()

    make_engine(watch_dir, delete_after_upload=True).delete(str(image))
    assert not image.exists()


def test_delete_missing_file_raises_when_enabled(watch_dir):
    engine = make_engine(watch_dir, delete_after_upload=True)

    with pytest.raises(OSError):
        engine.delete(str(watch_dir / "missing.png"))


def test_handler_forwards_files_and_move_destinations(tmp_path):
    seen = []
    handler = ImageEventHandler(seen.append)

    handler.on_created(Event(tmp_path / "a.png"))
    handler.on_modified(Event(tmp_path / "b.png"))
    handler.on_modified(Event(tmp_path, is_directory=True))
    handler.on_moved(Event(tmp_path / "c.tmp", dest=tmp_path / "c.png"))

    assert seen == [str(tmp_path / "a.png"), str(tmp_path / "b.png"), str(tmp_path / "c.png")]


def test_start_and_stop_drive_observer_and_close_channel(watch_dir):
    class FakeObserver:
        def __init__(self):
            self.scheduled = []
            self.started = False
            self.stopped = False
            self.daemon = False

        def schedule(self, handler, path, recursive=False):
            self.scheduled.append((path, recursive))

        def start(self):
            self.started = True

        def stop(self):
            self.stopped = True

        def join(self, timeout=None):
            pass

    observer = FakeObserver()
    engine = make_engine(watch_dir, observer_factory=lambda: observer, recursive=True)

    engine.start()
    assert observer.started
    assert observer.scheduled == [(str(engine.watch_path), True)]

    engine.stop()
    engine.stop()

    assert observer.stopped
    assert engine.events().closed


def test_stopped_engine_does_not_emit(watch_dir):
    engine = make_engine(watch_dir)
    engine.stop()
    image = watch_dir / "a.png"
    image.write_bytes(b"abc")

    assert not engine.process_event(str(image))


class HandlerCapturingObserver:
    daemon = False

    def __init__(self):
        self.handler = None

    def schedule(self, handler, path, recursive=False):
        self.handler = handler

    def start(self):
        pass

    def stop(self):
        pass

    def join(self, timeout=None):
        pass


def test_event_loop_survives_a_failing_event(watch_dir, monkeypatch):
    observer = HandlerCapturingObserver()
    engine = make_engine(watch_dir, observer_factory=lambda: observer)
    broken = watch_dir / "broken.png"
    good = watch_dir / "good.png"
    good.write_bytes(b"abc")

    process_event = engine.process_event

    def flaky_process_event(path):
        if path == str(broken):
            raise RuntimeError("unexpected failure")
        return process_event(path)

    monkeypatch.setattr(engine, "process_event", flaky_process_event)

    engine.start()
    try:
        observer.handler.on_created(Event(broken))
        observer.handler.on_created(Event(good))

        assert engine.events().pull(timeout=5.0) == str(good)
    finally:
        engine.stop()


def test_cleanup_loop_purges_on_its_timer(watch_dir, monkeypatch):
    monkeypatch.setattr("domains.image_upload.watcher.CLEANUP_INTERVAL", 0.01)
    clock = FakeClock()
    engine = make_engine(
        watch_dir, clock=clock, observer_factory=HandlerCapturingObserver
    )
    engine.mark_processed(str(watch_dir / "old.png"))
    clock.now += 301

    purged = threading.Event()
    cleanup_old_entries = engine.cleanup_old_entries

    def recording_cleanup():
        removed = cleanup_old_entries()
        if removed:
            purged.set()
        return removed

    monkeypatch.setattr(engine, "cleanup_old_entries", recording_cleanup)

    engine.start()
    try:
        assert purged.wait(timeout=5.0)
        assert engine.cleanup_old_entries() == 0
    finally:
        engine.stop()

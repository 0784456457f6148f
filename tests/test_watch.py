import threading
import time
from pathlib import Path

from psalm_supervisor.watch import WatchEventKind, create_file_watch

TIMEOUT = 10.0


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[WatchEventKind, str]] = []
        self._cond = threading.Condition()

    def __call__(self, kind: WatchEventKind, path: str) -> None:
        with self._cond:
            self.events.append((kind, path))
            self._cond.notify_all()

    def wait_for(self, kind: WatchEventKind) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: any(k is kind for k, _ in self.events), timeout=TIMEOUT)


def test_watch_reports_create_change_delete(tmp_path: Path) -> None:
    config = tmp_path / "psalm.xml"
    recorder = Recorder()
    handle = create_file_watch(str(config), recorder)
    try:
        config.write_text("<psalm/>", encoding="utf-8")
        assert recorder.wait_for(WatchEventKind.CREATED)

        config.write_text("<psalm errorLevel='1'/>", encoding="utf-8")
        assert recorder.wait_for(WatchEventKind.CHANGED)

        config.unlink()
        assert recorder.wait_for(WatchEventKind.DELETED)
        assert {path for _, path in recorder.events} == {str(config)}
    finally:
        handle.dispose()


def test_watch_ignores_other_files(tmp_path: Path) -> None:
    recorder = Recorder()
    handle = create_file_watch(str(tmp_path / "psalm.xml"), recorder)
    try:
        (tmp_path / "other.xml").write_text("x", encoding="utf-8")
        (tmp_path / "psalm.xml").write_text("<psalm/>", encoding="utf-8")
        assert recorder.wait_for(WatchEventKind.CREATED)
        assert all(path == str(tmp_path / "psalm.xml") for _, path in recorder.events)
    finally:
        handle.dispose()


def test_watch_on_missing_directory(tmp_path: Path) -> None:
    config = tmp_path / "conf" / "psalm.xml"
    recorder = Recorder()
    handle = create_file_watch(str(config), recorder)
    try:
        config.parent.mkdir()
        time.sleep(0.5)
        config.write_text("<psalm/>", encoding="utf-8")
        assert recorder.wait_for(WatchEventKind.CREATED)
    finally:
        handle.dispose()


def test_no_events_after_dispose(tmp_path: Path) -> None:
    config = tmp_path / "psalm.xml"
    recorder = Recorder()
    handle = create_file_watch(str(config), recorder)
    handle.dispose()
    assert handle.disposed
    handle.dispose()

    config.write_text("<psalm/>", encoding="utf-8")
    time.sleep(0.5)
    assert recorder.events == []

"""
Single-path file watches built on watchdog.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from overrides import override
from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer

log = logging.getLogger(__name__)


class WatchEventKind(Enum):
    CHANGED = "changed"
    CREATED = "created"
    DELETED = "deleted"


WatchListener = Callable[[WatchEventKind, str], None]


class WatchHandle(ABC):
    """A disposable subscription to change/create/delete notifications for exactly one path."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @abstractmethod
    def dispose(self) -> None:
        """Release the subscription; no events are delivered once this returns."""


WatchFactory = Callable[[str, WatchListener], WatchHandle]


@dataclass
class WatchBinding:
    path: str
    handle: WatchHandle


def _fs_path(value: bytes | str) -> str:
    return os.fsdecode(value)


class _SinglePathEventHandler(FileSystemEventHandler):
    def __init__(self, owner: "FileSystemWatchHandle") -> None:
        super().__init__()
        self._owner = owner

    @override
    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._owner._deliver(WatchEventKind.CREATED, _fs_path(event.src_path))

    @override
    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._owner._deliver(WatchEventKind.CHANGED, _fs_path(event.src_path))

    @override
    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._owner._deliver(WatchEventKind.DELETED, _fs_path(event.src_path))

    @override
    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory or not isinstance(event, FileSystemMovedEvent):
            return
        # an editor's atomic save shows up as a move onto the watched path
        self._owner._deliver(WatchEventKind.DELETED, _fs_path(event.src_path))
        self._owner._deliver(WatchEventKind.CREATED, _fs_path(event.dest_path))


class FileSystemWatchHandle(WatchHandle):
    """Watches one file by observing its directory (or the closest existing ancestor)."""

    def __init__(self, path: str, listener: WatchListener) -> None:
        super().__init__(os.path.abspath(path))
        self._listener = listener
        self._key = os.path.normcase(self.path)
        self._lock = threading.Lock()
        self._observer = Observer()

        watch_dir, recursive = self._find_watch_dir()
        self._observer.schedule(_SinglePathEventHandler(self), watch_dir, recursive=recursive)
        self._observer.daemon = True
        self._observer.start()
        log.debug("Watching %s (via %s, recursive=%s)", self.path, watch_dir, recursive)

    def _find_watch_dir(self) -> tuple[str, bool]:
        parent = os.path.dirname(self.path)
        if os.path.isdir(parent):
            return parent, False
        # the config directory may not exist yet; observe the closest existing ancestor
        ancestor = parent
        while not os.path.isdir(ancestor):
            next_ancestor = os.path.dirname(ancestor)
            if next_ancestor == ancestor:
                break
            ancestor = next_ancestor
        return ancestor, True

    def _deliver(self, kind: WatchEventKind, event_path: str) -> None:
        if os.path.normcase(os.path.abspath(event_path)) != self._key:
            return
        with self._lock:
            if self._disposed:
                return
        try:
            self._listener(kind, self.path)
        except Exception:
            log.exception("Watch listener for %s failed on %s event", self.path, kind.value)

    @override
    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
        self._observer.stop()
        if threading.current_thread() is not self._observer:
            self._observer.join(timeout=5)
            if self._observer.is_alive():
                log.warning("Watch observer for %s did not stop within 5s", self.path)
        log.debug("Stopped watching %s", self.path)


def create_file_watch(path: str, listener: WatchListener) -> WatchHandle:
    return FileSystemWatchHandle(path, listener)

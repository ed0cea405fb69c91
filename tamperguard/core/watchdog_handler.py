"""
TamperGuard - Watchdog event source for real-time change detection.

Translates watchdog file events into RawEvent items on a queue. Directory
events and editor temp files are dropped; a move yields one event for the
source path and one for the destination.
"""

import logging
import queue
from pathlib import Path
from typing import Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from tamperguard.core.models import EventKind, RawEvent
from tamperguard.core.scanner import is_temp_file

logger = logging.getLogger(__name__)


def _to_str(path: Union[str, bytes]) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="surrogateescape")
    return path


class TamperEventHandler(FileSystemEventHandler):
    """Pushes RawEvent items onto a queue."""

    def __init__(self, events: "queue.Queue[Optional[RawEvent]]") -> None:
        super().__init__()
        self._events = events

    def _put(self, path: Union[str, bytes], kind: EventKind) -> None:
        path = _to_str(path)
        if not path or is_temp_file(path):
            return
        self._events.put(RawEvent(path=path, kind=kind))
        logger.debug("Event: %s %s", kind.value, path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._put(event.src_path, EventKind.CREATE)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._put(event.src_path, EventKind.MODIFY)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._put(event.src_path, EventKind.DELETE)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._put(event.src_path, EventKind.MOVE)
        self._put(getattr(event, "dest_path", ""), EventKind.MOVE)


class WatchdogEventSource:
    """
    Subscription to filesystem changes under one root. get() blocks until
    the next event and returns None once unsubscribed.
    """

    def __init__(self, root: Union[str, Path], recursive: bool = True) -> None:
        self.root = str(Path(root))
        self.recursive = recursive
        self._events: "queue.Queue[Optional[RawEvent]]" = queue.Queue()
        self._observer: Optional[Observer] = None
        self._closed = False

    def subscribe(self) -> None:
        observer = Observer()
        observer.schedule(TamperEventHandler(self._events), self.root, recursive=self.recursive)
        observer.start()
        self._observer = observer
        logger.info("Watchdog observing %s (recursive=%s)", self.root, self.recursive)

    def get(self) -> Optional[RawEvent]:
        if self._closed:
            return None
        event = self._events.get()
        if self._closed:
            return None
        return event

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
        # Wake a consumer blocked in get().
        self._events.put(None)

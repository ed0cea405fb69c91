"""Pytest configuration and fixtures."""

import io
import queue
from typing import Optional

import pytest

from tamperguard.core.alerts import AuditLog
from tamperguard.core.config_loader import MonitorConfig
from tamperguard.core.hash_store import SQLiteHashStore, TextHashStore
from tamperguard.core.models import AlertLevel, RawEvent
from tamperguard.core.notifier import DispatchSettings, NotificationDispatcher


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that keeps every notification for assertions."""

    def __init__(self, **kwargs) -> None:
        self.stream = io.StringIO()
        super().__init__(AuditLog("test", stream=self.stream, colored=False), **kwargs)
        self.sent: list[tuple[str, AlertLevel]] = []

    def notify(self, message: str, level: AlertLevel) -> None:
        self.sent.append((message, AlertLevel(level)))
        super().notify(message, level)

    def messages(self) -> list[str]:
        return [message for message, _ in self.sent]


class QueueEventSource:
    """In-memory stand-in for the watchdog subscription."""

    def __init__(self) -> None:
        self.events: "queue.Queue[Optional[RawEvent]]" = queue.Queue()
        self.subscribed = False
        self.unsubscribed = False

    def subscribe(self) -> None:
        self.subscribed = True

    def get(self) -> Optional[RawEvent]:
        return self.events.get()

    def put(self, event: RawEvent) -> None:
        self.events.put(event)

    def unsubscribe(self) -> None:
        self.unsubscribed = True
        self.events.put(None)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher(settings=DispatchSettings(alerts_enabled=False))


@pytest.fixture
def event_source() -> QueueEventSource:
    return QueueEventSource()


@pytest.fixture(params=["text", "sqlite3"])
def store(request, tmp_path):
    """Both hash store backends."""
    if request.param == "sqlite3":
        backend = SQLiteHashStore(tmp_path / "state" / "hashes.db")
    else:
        backend = TextHashStore(tmp_path / "state" / "hashes.txt")
    yield backend
    backend.close()


@pytest.fixture
def base_config(tmp_path) -> MonitorConfig:
    return MonitorConfig(state_dir=tmp_path / "state", check_interval=1)

"""
TamperGuard - Monitoring engine.

One TamperMonitor per watched root. After an initial baseline it runs three
actors against the shared hash store and dispatcher:

  real-time consumer  -> classify -> dispatch -> store mutation
  periodic rescan     -> verify every stored path each check interval
  email aggregator    -> one batched email per aggregation interval

A StoreError in any actor is fatal: the monitor reports it at the highest
level, stops every actor and re-raises it from run().
"""

import logging
import os
import threading
from typing import Callable, Optional, Protocol

from tamperguard.core.alerts import AuditLog
from tamperguard.core.config_loader import MonitorConfig
from tamperguard.core.email_service import EmailAggregator, EmailService, batch_mailer
from tamperguard.core.hash_store import HashStore, StoreError, open_hash_store
from tamperguard.core.hashing import HashEngine
from tamperguard.core.models import (
    HIGHEST_LEVEL,
    AlertLevel,
    EventKind,
    ImportanceTier,
    RawEvent,
    VerifyOutcome,
)
from tamperguard.core.notifier import DispatchSettings, NotificationDispatcher, SyslogSink
from tamperguard.core.scanner import DirectoryScanner
from tamperguard.core.verifier import IntegrityVerifier
from tamperguard.core.watchdog_handler import WatchdogEventSource
from tamperguard.core.webhook import WebhookSender

logger = logging.getLogger(__name__)

VIOLATION_LEVEL = AlertLevel.ALERT

_PAST_TENSE = {
    EventKind.CREATE: "created",
    EventKind.MODIFY: "modified",
    EventKind.DELETE: "deleted",
    EventKind.MOVE: "moved",
}


class EventSource(Protocol):
    def subscribe(self) -> None: ...

    def get(self) -> Optional[RawEvent]: ...

    def unsubscribe(self) -> None: ...


def normalize_root(path: str) -> str:
    """Absolute, normalized root path. Rejects an empty root and '/'."""
    if not path or not path.strip():
        raise ValueError("No target directory specified")
    root = os.path.normpath(os.path.abspath(path))
    if not root.strip("/"):
        raise ValueError("Refusing to monitor the filesystem root")
    return root


def decode_instance_name(name: str) -> str:
    """Turn a service-manager instance name (etc_ssh) back into a path (/etc/ssh)."""
    path = "/" + name.replace("_", "/")
    while "//" in path:
        path = path.replace("//", "/")
    return normalize_root(path)


def service_id_for(root: str) -> str:
    """/etc/ssh -> etc_ssh"""
    return root.lstrip("/").replace("/", "_")


def build_dispatcher(config: MonitorConfig, service_id: str) -> NotificationDispatcher:
    """Wire the audit log and every sink enabled in config."""
    audit_log = AuditLog(service_id, log_format=config.log_format)
    syslog_sink = SyslogSink(service_id, config.syslog.facility) if config.syslog.enabled else None
    aggregator = None
    if config.email.active:
        mailer = EmailService(config.smtp, config.email.recipient)
        aggregator = EmailAggregator(
            batch_mailer(mailer, service_id),
            interval=config.email.aggregation_interval,
        )
    elif config.email.enabled:
        logger.warning("[EMAIL] Email enabled but no recipient configured; skipping")
    webhook = WebhookSender(config.webhook.url) if config.webhook.active else None
    if config.webhook.enabled and webhook is None:
        logger.warning("[WEBHOOK] Webhook enabled but no url configured; skipping")
    return NotificationDispatcher(
        audit_log,
        DispatchSettings(
            alerts_enabled=config.enable_alerts,
            email_min_level=config.email.min_priority,
        ),
        syslog_sink=syslog_sink,
        email_aggregator=aggregator,
        webhook=webhook,
    )


class TamperMonitor:
    """Integrity monitor for one watched root."""

    def __init__(
        self,
        config: MonitorConfig,
        root: str,
        stop_event: Optional[Callable[[], bool]] = None,
        store: Optional[HashStore] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        event_source: Optional[EventSource] = None,
    ) -> None:
        self.root = normalize_root(root)
        self.service_id = service_id_for(self.root)
        self.config = config.scoped_to(self.root)
        self.stop_event = stop_event or (lambda: False)
        self.resolver = self.config.policy_resolver()
        self.matrix = self.config.matrix()
        self.recursive = self.config.recursive_for(self.root)
        self.scanner = DirectoryScanner(recursive=self.recursive)
        self.store = store or open_hash_store(
            self.config.storage_mode, self.config.state_dir, self.service_id
        )
        self.dispatcher = dispatcher or build_dispatcher(self.config, self.service_id)
        self.verifier = IntegrityVerifier(
            self.store,
            HashEngine(self.config.hash_algorithm),
            on_violation=self._report_violation,
        )
        self.event_source = event_source or WatchdogEventSource(self.root, recursive=self.recursive)
        self._halt = threading.Event()
        self._fatal_lock = threading.Lock()
        self._fatal: Optional[StoreError] = None
        self._threads: list[threading.Thread] = []

    def _report_violation(self, outcome: VerifyOutcome) -> None:
        self.dispatcher.notify(
            f"Integrity violation detected in file: {outcome.path}", VIOLATION_LEVEL
        )

    # --- baseline and rescan ---

    def purge_ignored(self) -> int:
        """Drop stored records for paths now classified as ignore."""
        stale = [path for path, _ in self.store.scan_all() if self.resolver.is_ignored(path)]
        for path in stale:
            self.store.delete(path)
        if stale:
            logger.info("Removed %d ignored paths from the hash store", len(stale))
        return len(stale)

    def establish_baseline(self) -> int:
        """Verify every trackable file under the root; returns the count checked."""
        self.dispatcher.audit_log.emit(
            AlertLevel.INFO, f"Calculating initial hash values for {self.root}"
        )
        self.purge_ignored()
        checked = 0
        for path in self.scanner.iter_files(self.root):
            if self._stopping():
                break
            if self.resolver.is_ignored(path):
                continue
            if self.verifier.verify(path) is not None:
                checked += 1
        logger.info("Baseline established for %s (%d files)", self.root, checked)
        return checked

    def rescan(self) -> int:
        """Verify every stored path that still exists; returns the count checked."""
        checked = 0
        for path, _digest in self.store.scan_all():
            if self._stopping():
                break
            if self.resolver.is_ignored(path) or not os.path.isfile(path):
                continue
            if self.verifier.verify(path) is not None:
                checked += 1
        logger.debug("Periodic rescan of %s checked %d files", self.root, checked)
        return checked

    # --- real-time events ---

    def handle_event(self, event: RawEvent) -> Optional[VerifyOutcome]:
        """Classify one event, dispatch its notification, then update the store."""
        path = os.path.normpath(event.path)
        tier = self.resolver.resolve(path)
        if tier == ImportanceTier.IGNORE:
            return None
        kind = event.kind
        level = self.matrix.level_for(tier, kind)
        message = f"File {_PAST_TENSE[kind]}: {path}"

        if kind in (EventKind.CREATE, EventKind.MODIFY):
            outcome = self.verifier.inspect(path)
            if outcome is None:
                logger.warning("File %s does not exist when attempting to calculate hash", path)
                return None
            if level == AlertLevel.IGNORE:
                # Unreported changes keep the old digest so the rescan flags them.
                if not outcome.is_violation:
                    self.verifier.commit(outcome)
                return outcome
            if outcome.needs_rebaseline:
                self.dispatcher.notify(message, level)
            self.verifier.commit(outcome)
            return outcome

        if level != AlertLevel.IGNORE:
            self.dispatcher.notify(message, level)
        if kind == EventKind.MOVE:
            outcome = self.verifier.verify(path)
            if outcome is not None:
                return outcome
        self.store.delete(path)
        return None

    # --- actors ---

    def _fail(self, error: StoreError) -> None:
        with self._fatal_lock:
            if self._fatal is None:
                self._fatal = error
                logger.critical("Hash store failure for %s: %s", self.root, error)
        self._halt.set()

    def _consume_events(self) -> None:
        while not self._halt.is_set():
            event = self.event_source.get()
            if event is None:
                break
            try:
                self.handle_event(event)
            except StoreError as e:
                self._fail(e)
                break
            except Exception as e:
                logger.exception("Failed to handle %s on %s: %s", event.kind.value, event.path, e)

    def _periodic_rescan(self) -> None:
        interval = self.config.check_interval
        while not self._halt.wait(interval):
            try:
                self.rescan()
            except StoreError as e:
                self._fail(e)
                break
            except Exception as e:
                logger.exception("Periodic rescan failed: %s", e)

    def _start_actor(self, target: Callable[[], None], name: str) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def _stopping(self) -> bool:
        return self._halt.is_set() or self.stop_event()

    def request_stop(self) -> None:
        self._halt.set()

    def run(self) -> None:
        logger.info(
            "Starting TamperGuard monitor for %s (interval=%ds, storage=%s, recursive=%s)",
            self.root, self.config.check_interval, self.config.storage_mode, self.recursive,
        )
        aggregator = self.dispatcher.email_aggregator
        try:
            self.dispatcher.notify(f"Starting file monitoring for {self.root}", AlertLevel.INFO)
            self.event_source.subscribe()
            try:
                self.establish_baseline()
            except StoreError as e:
                self._fail(e)
            if not self._stopping():
                if aggregator is not None:
                    aggregator.start()
                self._start_actor(self._consume_events, "event-consumer")
                self._start_actor(self._periodic_rescan, "periodic-rescan")
            while not self._stopping():
                self._halt.wait(1.0)
        finally:
            self._shutdown()
        if self._fatal is not None:
            raise self._fatal

    def _shutdown(self) -> None:
        self.event_source.unsubscribe()
        if self._fatal is not None:
            self.dispatcher.notify(
                f"Hash store failure for {self.root}: {self._fatal}", HIGHEST_LEVEL
            )
        self.dispatcher.notify(f"Service terminated: {self.root}", HIGHEST_LEVEL)
        self._halt.set()
        if self.dispatcher.email_aggregator is not None:
            self.dispatcher.email_aggregator.stop()
        for thread in self._threads:
            thread.join(timeout=5.0)
        self._threads = []
        self.dispatcher.close()
        self.store.close()
        logger.info("TamperGuard monitor for %s stopped.", self.root)

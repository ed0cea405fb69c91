"""
TamperGuard - Email transport and aggregation.

EmailService sends plain-text mail over SMTP (STARTTLS + login only when
credentials are configured). EmailAggregator batches pending notifications
and emits at most one email per aggregation interval.
"""

import logging
import smtplib
import threading
import time
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_SMTP_HOST = "localhost"
DEFAULT_SMTP_PORT = 25


@dataclass(frozen=True)
class SMTPConfig:
    """SMTP connection parameters (from environment variables only)."""

    host: str = DEFAULT_SMTP_HOST
    port: int = DEFAULT_SMTP_PORT
    user: Optional[str] = None
    password: Optional[str] = None
    from_addr: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.user and self.password)


class EmailService:
    """SMTP transport layer."""

    def __init__(self, smtp_config: SMTPConfig, email_to: str, timeout: float = 30.0) -> None:
        self._cfg = smtp_config
        self.email_to = email_to
        self.timeout = timeout

    @property
    def sender(self) -> str:
        return self._cfg.from_addr or self._cfg.user or f"tamperguard@{self._cfg.host}"

    def build_message(self, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = self.email_to
        msg.set_content(body)
        return msg

    def send(self, subject: str, body: str) -> bool:
        """
        Send one message. Returns True on success, False on failure
        (logged, never raised).
        """
        msg = self.build_message(subject, body)
        try:
            with smtplib.SMTP(self._cfg.host, self._cfg.port, timeout=self.timeout) as server:
                if self._cfg.has_credentials:
                    server.starttls()
                    server.login(self._cfg.user, self._cfg.password)
                server.send_message(msg)
            logger.info("[EMAIL] Alert email sent to %s", self.email_to)
            return True
        except smtplib.SMTPException as e:
            logger.warning("[EMAIL] SMTP error: %s", e)
            return False
        except OSError as e:
            logger.warning("[EMAIL] Failed to send: %s", e)
            return False


@dataclass(frozen=True)
class PendingNotification:
    message: str
    enqueued_at: float


BatchSender = Callable[[list[PendingNotification]], object]


class EmailAggregator:
    """
    Timer-driven batcher. enqueue() and the swap in flush() share one lock;
    the send itself runs outside the lock, so messages enqueued while a batch
    is being mailed land in the fresh queue and go out with the next batch.
    """

    def __init__(self, send_batch: BatchSender, interval: float) -> None:
        self._send_batch = send_batch
        self.interval = interval
        self._lock = threading.Lock()
        self._pending: list[PendingNotification] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def enqueue(self, message: str) -> None:
        item = PendingNotification(message=message, enqueued_at=time.time())
        with self._lock:
            self._pending.append(item)

    def flush(self) -> int:
        """Send everything queued so far as one email. Returns the batch size."""
        with self._lock:
            if not self._pending:
                return 0
            batch, self._pending = self._pending, []
        try:
            self._send_batch(batch)
        except Exception as e:
            logger.warning("[EMAIL] Batch of %d notifications not delivered: %s", len(batch), e)
        return len(batch)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.flush()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="email-aggregator", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop ticking. Anything still queued is abandoned."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        with self._lock:
            if self._pending:
                logger.info("[EMAIL] Abandoning %d queued notifications at shutdown", len(self._pending))
            self._pending = []


def batch_mailer(service: EmailService, service_id: str) -> BatchSender:
    """Adapt an EmailService into the aggregator's batch sender."""

    def send(batch: list[PendingNotification]) -> bool:
        subject = f"Tampering Alert on {service_id}"
        body = "\n".join(item.message for item in batch) + "\n"
        return service.send(subject, body)

    return send

"""
TamperGuard - Webhook notifications.

POSTs a fixed JSON payload {serviceId, alertLevel, message, timestamp} to a
configured URL. Delivery is best-effort and runs on a small worker pool so a
slow or unreachable endpoint never blocks the caller.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import requests

from tamperguard.core.models import AlertLevel

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class WebhookPayload:
    service_id: str
    alert_level: AlertLevel
    message: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "serviceId": self.service_id,
            "alertLevel": self.alert_level.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }


def build_payload(service_id: str, level: AlertLevel, message: str) -> WebhookPayload:
    return WebhookPayload(
        service_id=service_id,
        alert_level=level,
        message=message,
        timestamp=datetime.now().astimezone().isoformat(timespec="seconds"),
    )


class WebhookSender:
    """Fire-and-forget JSON POSTs."""

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        max_workers: int = 2,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webhook")

    def deliver(self, payload: WebhookPayload) -> bool:
        """Send one payload synchronously. Returns True on a 2xx response."""
        try:
            resp = self._session.post(self.url, json=payload.to_dict(), timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("[WEBHOOK] Delivery to %s failed: %s", self.url, e)
            return False
        if not 200 <= resp.status_code < 300:
            logger.warning("[WEBHOOK] %s answered HTTP %d", self.url, resp.status_code)
            return False
        return True

    def submit(self, payload: WebhookPayload) -> Optional[Future]:
        """Queue a payload for background delivery."""
        try:
            return self._executor.submit(self.deliver, payload)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning("[WEBHOOK] Dropped notification: %s", e)
            return None

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self._session.close()

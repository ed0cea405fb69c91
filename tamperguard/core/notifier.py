"""
TamperGuard - Notification dispatcher.

notify(message, level) always writes the audit line, then independently
forwards to syslog, the email aggregation queue and the webhook sink, each
gated by its own settings and by the global alerts switch. A failing sink
is logged and never stops the others.
"""

import logging
import syslog
from dataclasses import dataclass
from typing import Optional

from tamperguard.core.alerts import AuditLog, printable
from tamperguard.core.email_service import EmailAggregator
from tamperguard.core.models import AlertLevel
from tamperguard.core.webhook import WebhookSender, build_payload

logger = logging.getLogger(__name__)

DEFAULT_SYSLOG_FACILITY = "auth"

# Syslog names of the alert levels; "critical" and "warning" use the
# short forms, the rest pass through unchanged.
SYSLOG_PRIORITY_NAMES = {
    AlertLevel.INFO: "info",
    AlertLevel.NOTICE: "notice",
    AlertLevel.WARNING: "warn",
    AlertLevel.ALERT: "alert",
    AlertLevel.CRITICAL: "crit",
}

_SYSLOG_PRIORITIES = {
    "info": syslog.LOG_INFO,
    "notice": syslog.LOG_NOTICE,
    "warn": syslog.LOG_WARNING,
    "alert": syslog.LOG_ALERT,
    "crit": syslog.LOG_CRIT,
}

_SYSLOG_FACILITIES = {
    "kern": syslog.LOG_KERN,
    "user": syslog.LOG_USER,
    "mail": syslog.LOG_MAIL,
    "daemon": syslog.LOG_DAEMON,
    "auth": syslog.LOG_AUTH,
    "syslog": syslog.LOG_SYSLOG,
    "lpr": syslog.LOG_LPR,
    "news": syslog.LOG_NEWS,
    "uucp": syslog.LOG_UUCP,
    "cron": syslog.LOG_CRON,
    "authpriv": getattr(syslog, "LOG_AUTHPRIV", syslog.LOG_AUTH),
    "local0": syslog.LOG_LOCAL0,
    "local1": syslog.LOG_LOCAL1,
    "local2": syslog.LOG_LOCAL2,
    "local3": syslog.LOG_LOCAL3,
    "local4": syslog.LOG_LOCAL4,
    "local5": syslog.LOG_LOCAL5,
    "local6": syslog.LOG_LOCAL6,
    "local7": syslog.LOG_LOCAL7,
}


def syslog_priority_name(level: AlertLevel) -> str:
    return SYSLOG_PRIORITY_NAMES.get(level, level.value)


def is_known_facility(name: str) -> bool:
    return name.lower() in _SYSLOG_FACILITIES


class SyslogSink:
    """Forwards notifications to the local syslog daemon."""

    def __init__(self, service_id: str, facility: str = DEFAULT_SYSLOG_FACILITY) -> None:
        self.ident = f"tamperguard[{service_id}]"
        self.facility = _SYSLOG_FACILITIES.get(facility.lower(), syslog.LOG_AUTH)
        self._opened = False

    def send(self, level: AlertLevel, message: str) -> None:
        if not self._opened:
            syslog.openlog(ident=self.ident, facility=self.facility)
            self._opened = True
        priority = _SYSLOG_PRIORITIES.get(syslog_priority_name(level), syslog.LOG_NOTICE)
        syslog.syslog(self.facility | priority, message)

    def close(self) -> None:
        if self._opened:
            syslog.closelog()
            self._opened = False


@dataclass(frozen=True)
class DispatchSettings:
    alerts_enabled: bool = True
    email_min_level: AlertLevel = AlertLevel.NOTICE


class NotificationDispatcher:
    """Routes one notification to every enabled sink."""

    def __init__(
        self,
        audit_log: AuditLog,
        settings: DispatchSettings = DispatchSettings(),
        syslog_sink: Optional[SyslogSink] = None,
        email_aggregator: Optional[EmailAggregator] = None,
        webhook: Optional[WebhookSender] = None,
    ) -> None:
        self.audit_log = audit_log
        self.settings = settings
        self.syslog_sink = syslog_sink
        self.email_aggregator = email_aggregator
        self.webhook = webhook

    @property
    def service_id(self) -> str:
        return self.audit_log.service_id

    def notify(self, message: str, level: AlertLevel) -> None:
        level = AlertLevel(level)
        message = printable(message)
        self.audit_log.emit(level, message)
        if not self.settings.alerts_enabled:
            return

        if self.syslog_sink is not None:
            try:
                self.syslog_sink.send(level, message)
            except Exception as e:
                logger.warning("[SYSLOG] Forwarding failed: %s", e)

        if self.email_aggregator is not None and level.at_least(self.settings.email_min_level):
            try:
                self.email_aggregator.enqueue(message)
            except Exception as e:
                logger.warning("[EMAIL] Could not queue notification: %s", e)

        if self.webhook is not None:
            try:
                self.webhook.submit(build_payload(self.service_id, level, message))
            except Exception as e:
                logger.warning("[WEBHOOK] Could not queue notification: %s", e)

    def close(self) -> None:
        if self.webhook is not None:
            self.webhook.close(wait=True)
        if self.syslog_sink is not None:
            self.syslog_sink.close()

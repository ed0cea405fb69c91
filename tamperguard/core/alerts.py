"""
TamperGuard - Audit log.

Every notification is written as one line to stdout, either plain
("[timestamp] level: message") or JSON. This is the unconditional audit
trail; the other sinks are optional. Uses colorama to color plain lines
when stdout is a terminal.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Optional, TextIO

import colorama
from colorama import Fore

from tamperguard.core.models import AlertLevel

logger = logging.getLogger(__name__)

SERVICE_NAME = "tamperguard"

LOG_FORMAT_PLAIN = "plain"
LOG_FORMAT_JSON = "json"
LOG_FORMATS = (LOG_FORMAT_PLAIN, LOG_FORMAT_JSON)

_colorama_init_done = False


def _ensure_colorama() -> None:
    global _colorama_init_done
    if not _colorama_init_done:
        colorama.init()
        _colorama_init_done = True


def _color_for(level: AlertLevel) -> str:
    if level.at_least(AlertLevel.ALERT):
        return Fore.RED
    if level == AlertLevel.WARNING:
        return Fore.YELLOW
    return Fore.GREEN


def printable(message: str) -> str:
    """Render undecodable file-name bytes as \\x escapes so every sink can encode the text."""
    return message.encode("utf-8", "surrogateescape").decode("utf-8", "backslashreplace")


def _timestamp() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


class AuditLog:
    """
    Line-oriented audit writer. Each record is built in full and written
    with a single write call, so concurrent actors never interleave lines.
    """

    def __init__(
        self,
        service_id: str,
        log_format: str = LOG_FORMAT_PLAIN,
        stream: Optional[TextIO] = None,
        colored: Optional[bool] = None,
    ) -> None:
        self.service_id = service_id
        self.log_format = log_format if log_format in LOG_FORMATS else LOG_FORMAT_PLAIN
        self._stream = stream
        self._colored = colored

    @property
    def stream(self) -> TextIO:
        # Resolved lazily so redirected/captured stdout is honored.
        return self._stream if self._stream is not None else sys.stdout

    def _use_color(self) -> bool:
        if self.log_format != LOG_FORMAT_PLAIN:
            return False
        if self._colored is not None:
            return self._colored
        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    def format_line(self, level: AlertLevel, message: str) -> str:
        ts = _timestamp()
        if self.log_format == LOG_FORMAT_JSON:
            return json.dumps(
                {
                    "timestamp": ts,
                    "level": level.value,
                    "service": SERVICE_NAME,
                    "service_id": self.service_id,
                    "message": message,
                }
            )
        return f"[{ts}] {level.value}: {message}"

    def emit(self, level: AlertLevel, message: str) -> None:
        line = self.format_line(level, message)
        if self._use_color():
            _ensure_colorama()
            line = f"{_color_for(level)}{line}{Fore.RESET}"
        try:
            self.stream.write(line + "\n")
            self.stream.flush()
        except (OSError, ValueError) as e:
            logger.error("Failed to write audit line: %s", e)

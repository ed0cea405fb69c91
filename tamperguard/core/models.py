"""
TamperGuard - Shared data models (tiers, levels, events, outcomes).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ImportanceTier(str, Enum):
    """Sensitivity of a monitored path."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    IGNORE = "ignore"


class EventKind(str, Enum):
    """Filesystem change kinds reported by the event source."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    MOVE = "move"


class AlertLevel(str, Enum):
    """Notification severity, ordered from IGNORE (lowest) to CRITICAL."""

    IGNORE = "ignore"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ALERT = "alert"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def at_least(self, other: "AlertLevel") -> bool:
        return self.rank >= other.rank


_LEVEL_ORDER = (
    AlertLevel.IGNORE,
    AlertLevel.INFO,
    AlertLevel.NOTICE,
    AlertLevel.WARNING,
    AlertLevel.ALERT,
    AlertLevel.CRITICAL,
)

HIGHEST_LEVEL = _LEVEL_ORDER[-1]


@dataclass(frozen=True)
class WatchTarget:
    """A monitored directory and the importance its files get by default."""

    path: str
    recursive: bool = True
    default_importance: ImportanceTier = ImportanceTier.LOW


@dataclass(frozen=True)
class FileOverride:
    """Importance pinned to one exact path."""

    path: str
    importance: ImportanceTier


@dataclass(frozen=True)
class RawEvent:
    """One change notification from the filesystem event source."""

    path: str
    kind: EventKind


class OutcomeKind(str, Enum):
    UNCHANGED = "unchanged"
    FIRST_SEEN = "first_seen"
    VIOLATION = "violation"


@dataclass(frozen=True)
class VerifyOutcome:
    """Result of comparing a file's current digest against its baseline."""

    kind: OutcomeKind
    path: str
    new_digest: str
    old_digest: Optional[str] = None

    @property
    def is_violation(self) -> bool:
        return self.kind == OutcomeKind.VIOLATION

    @property
    def needs_rebaseline(self) -> bool:
        return self.kind != OutcomeKind.UNCHANGED

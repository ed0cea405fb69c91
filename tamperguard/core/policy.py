"""
TamperGuard - Importance policy and alert matrix.

PolicyResolver maps a path to its importance tier (exact file override,
else the longest matching watch-target prefix, else the global default).
AlertMatrix maps (tier, event kind) to the alert level handed to the
notification dispatcher.
"""

import logging
from typing import Iterable, Mapping, Optional

from tamperguard.core.models import (
    AlertLevel,
    EventKind,
    FileOverride,
    ImportanceTier,
    WatchTarget,
)

logger = logging.getLogger(__name__)

DEFAULT_IMPORTANCE = ImportanceTier.LOW


def _normalize(path: str) -> str:
    if len(path) > 1:
        return path.rstrip("/")
    return path


def is_under(path: str, prefix: str) -> bool:
    """True if path equals prefix or lies below it (whole path components only)."""
    path = _normalize(path)
    prefix = _normalize(prefix)
    if path == prefix:
        return True
    if prefix == "/":
        return path.startswith("/")
    return path.startswith(prefix + "/")


class PolicyResolver:
    """Resolves the importance tier of a path. Immutable after construction."""

    def __init__(
        self,
        targets: Iterable[WatchTarget],
        overrides: Iterable[FileOverride] = (),
        default: ImportanceTier = DEFAULT_IMPORTANCE,
    ) -> None:
        # Longest prefix first so the first hit is the most specific rule.
        self._targets = tuple(
            sorted(targets, key=lambda t: len(_normalize(t.path)), reverse=True)
        )
        self._overrides = {_normalize(o.path): o.importance for o in overrides}
        self._default = default

    def resolve(self, path: str) -> ImportanceTier:
        path = _normalize(path)
        override = self._overrides.get(path)
        if override is not None:
            return override
        for target in self._targets:
            if is_under(path, target.path):
                return target.default_importance
        return self._default

    def is_ignored(self, path: str) -> bool:
        return self.resolve(path) == ImportanceTier.IGNORE


class AlertMatrix:
    """Static (tier x event kind) -> alert level table; unmapped cells are IGNORE."""

    def __init__(
        self,
        table: Optional[Mapping[ImportanceTier, Mapping[EventKind, AlertLevel]]] = None,
    ) -> None:
        self._table: dict[ImportanceTier, dict[EventKind, AlertLevel]] = {
            tier: {} for tier in ImportanceTier
        }
        for tier, row in (table or {}).items():
            for kind, level in row.items():
                self._table[ImportanceTier(tier)][EventKind(kind)] = AlertLevel(level)

    def level_for(self, tier: ImportanceTier, kind: EventKind) -> AlertLevel:
        return self._table[tier].get(kind, AlertLevel.IGNORE)

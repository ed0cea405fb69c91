"""
TamperGuard - Verification engine.

Compares a file's current digest with its stored baseline. Every detected
change is re-baselined right after it is reported, so an unmodified file
checked again reports Unchanged.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from tamperguard.core.hash_store import HashStore
from tamperguard.core.hashing import HashEngine
from tamperguard.core.models import OutcomeKind, VerifyOutcome

logger = logging.getLogger(__name__)

ViolationCallback = Callable[[VerifyOutcome], None]


class IntegrityVerifier:
    """Drift detection over a HashStore."""

    def __init__(
        self,
        store: HashStore,
        hash_engine: Optional[HashEngine] = None,
        on_violation: Optional[ViolationCallback] = None,
    ) -> None:
        self.store = store
        self.hash_engine = hash_engine or HashEngine()
        self._on_violation = on_violation

    def inspect(self, path: str) -> Optional[VerifyOutcome]:
        """Classify path against its baseline without touching the store.

        Returns None when the file no longer exists or cannot be read.
        """
        if not Path(path).is_file():
            return None
        current = self.hash_engine.compute_file_hash(path)
        if current is None:
            return None
        stored, found = self.store.get(path)
        if not found:
            return VerifyOutcome(OutcomeKind.FIRST_SEEN, path, current)
        if stored == current:
            return VerifyOutcome(OutcomeKind.UNCHANGED, path, current, old_digest=stored)
        return VerifyOutcome(OutcomeKind.VIOLATION, path, current, old_digest=stored)

    def commit(self, outcome: VerifyOutcome) -> None:
        """Re-baseline the store from an inspected outcome."""
        if outcome.needs_rebaseline:
            self.store.upsert(outcome.path, outcome.new_digest)

    def verify(self, path: str) -> Optional[VerifyOutcome]:
        """Inspect, report a violation if any, then re-baseline."""
        outcome = self.inspect(path)
        if outcome is None:
            logger.debug("Skipping vanished file: %s", path)
            return None
        if outcome.is_violation:
            logger.info(
                "Digest mismatch for %s: %s -> %s",
                path, outcome.old_digest, outcome.new_digest,
            )
            if self._on_violation is not None:
                self._on_violation(outcome)
        self.commit(outcome)
        return outcome

"""Tests for the verification engine."""

import hashlib

import pytest

from tamperguard.core.hashing import HashEngine
from tamperguard.core.models import OutcomeKind
from tamperguard.core.verifier import IntegrityVerifier


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class TestVerify:
    def test_first_seen_records_baseline(self, store, tmp_path):
        target = tmp_path / "app.conf"
        target.write_bytes(b"v1")
        verifier = IntegrityVerifier(store)

        outcome = verifier.verify(str(target))

        assert outcome.kind == OutcomeKind.FIRST_SEEN
        assert store.get(str(target)) == (sha256(b"v1"), True)

    def test_unchanged_twice(self, store, tmp_path):
        target = tmp_path / "app.conf"
        target.write_bytes(b"v1")
        verifier = IntegrityVerifier(store)
        verifier.verify(str(target))

        assert verifier.verify(str(target)).kind == OutcomeKind.UNCHANGED
        assert verifier.verify(str(target)).kind == OutcomeKind.UNCHANGED

    def test_violation_reported_once_then_rebaselined(self, store, tmp_path):
        target = tmp_path / "app.conf"
        target.write_bytes(b"v1")
        reported = []
        verifier = IntegrityVerifier(store, on_violation=reported.append)
        verifier.verify(str(target))

        target.write_bytes(b"tampered")
        second = verifier.verify(str(target))
        third = verifier.verify(str(target))

        assert second.kind == OutcomeKind.VIOLATION
        assert second.old_digest == sha256(b"v1")
        assert second.new_digest == sha256(b"tampered")
        assert third.kind == OutcomeKind.UNCHANGED
        assert [o.path for o in reported] == [str(target)]
        assert store.get(str(target)) == (sha256(b"tampered"), True)

    def test_toggling_content_alerts_every_time(self, store, tmp_path):
        target = tmp_path / "toggle"
        reported = []
        verifier = IntegrityVerifier(store, on_violation=reported.append)
        target.write_bytes(b"a")
        verifier.verify(str(target))
        for content in (b"b", b"a", b"b"):
            target.write_bytes(content)
            verifier.verify(str(target))
        assert len(reported) == 3

    def test_missing_file_is_skipped(self, store, tmp_path):
        verifier = IntegrityVerifier(store)
        assert verifier.verify(str(tmp_path / "gone")) is None
        assert len(store) == 0

    def test_inspect_does_not_touch_store(self, store, tmp_path):
        target = tmp_path / "new"
        target.write_bytes(b"x")
        verifier = IntegrityVerifier(store)

        outcome = verifier.inspect(str(target))

        assert outcome.kind == OutcomeKind.FIRST_SEEN
        assert store.get(str(target))[1] is False
        verifier.commit(outcome)
        assert store.get(str(target))[1] is True


class TestHashEngine:
    def test_algorithm_is_pluggable(self, tmp_path):
        target = tmp_path / "f"
        target.write_bytes(b"payload")
        assert HashEngine("sha512").compute_file_hash(target) == hashlib.sha512(b"payload").hexdigest()
        assert HashEngine("SHA256").compute_file_hash(target) == sha256(b"payload")

    def test_missing_file(self, tmp_path):
        assert HashEngine().compute_file_hash(tmp_path / "nope") is None

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError):
            HashEngine("crc-unknown")

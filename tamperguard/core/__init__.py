"""
TamperGuard - File Integrity Monitoring Core Module.

Provides importance policy, hashing, the baseline hash store, verification,
notification dispatch and the monitoring engine.
"""

from tamperguard.core.hash_store import HashStore, StoreError, open_hash_store
from tamperguard.core.hashing import HashEngine
from tamperguard.core.monitor import TamperMonitor
from tamperguard.core.notifier import NotificationDispatcher
from tamperguard.core.policy import AlertMatrix, PolicyResolver
from tamperguard.core.scanner import DirectoryScanner
from tamperguard.core.verifier import IntegrityVerifier

__all__ = [
    "AlertMatrix",
    "DirectoryScanner",
    "HashEngine",
    "HashStore",
    "IntegrityVerifier",
    "NotificationDispatcher",
    "PolicyResolver",
    "StoreError",
    "TamperMonitor",
    "open_hash_store",
]

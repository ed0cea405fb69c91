"""
TamperGuard - Hash store (last-known-good digest per path).

Two interchangeable backends:
- TextHashStore: "digest  path" lines (sha256sum layout). Records are held in
  an indexed map and every mutation rewrites the file through a temp file and
  an atomic rename, so readers never see a torn line. Names holding a
  backslash or line break are escaped the way sha256sum escapes them.
- SQLiteHashStore: single hashes(path PRIMARY KEY, hash) table keyed by the
  raw filesystem bytes of the path, WAL mode,
  one connection per operation, single-statement upsert/delete.

Both serialize writers with an in-process lock and are safe to share between
the real-time consumer and the periodic rescan.
"""

import logging
import os
import sqlite3
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

logger = logging.getLogger(__name__)

STORAGE_TEXT = "text"
STORAGE_SQLITE = "sqlite3"
STORAGE_MODES = (STORAGE_TEXT, STORAGE_SQLITE)

_SEPARATOR = "  "
_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"\\": "\\", "n": "\n", "r": "\r"}
_SCAN_BATCH = 500


class StoreError(RuntimeError):
    """The baseline store is corrupt or unavailable. Fatal for the watch target."""


class HashStore(ABC):
    """Durable path -> digest mapping."""

    @abstractmethod
    def get(self, path: str) -> Tuple[Optional[str], bool]:
        """Return (digest, found)."""

    @abstractmethod
    def upsert(self, path: str, digest: str) -> None:
        """Insert or replace the digest for path. Last write wins."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove the record for path; no-op if absent."""

    @abstractmethod
    def scan_all(self) -> Iterator[Tuple[str, str]]:
        """Lazily yield (path, digest) for every record; each call starts fresh."""

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        return sum(1 for _ in self.scan_all())


def format_line(path: str, digest: str) -> str:
    """One sha256sum-style line. Names with a backslash or line break are escaped
    and the line gets a leading backslash, as coreutils does."""
    if any(ch in path for ch in _ESCAPES):
        escaped = "".join(_ESCAPES.get(ch, ch) for ch in path)
        return f"\\{digest}{_SEPARATOR}{escaped}\n"
    return f"{digest}{_SEPARATOR}{path}\n"


def _unescape(name: str) -> str:
    out = []
    chars = iter(name)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, None)
        if nxt not in _UNESCAPES:
            raise ValueError(f"bad escape sequence in {name!r}")
        out.append(_UNESCAPES[nxt])
    return "".join(out)


def parse_line(line: str) -> Tuple[str, str]:
    """Inverse of format_line. Raises ValueError on a malformed line."""
    escaped = line.startswith("\\")
    if escaped:
        line = line[1:]
    digest, sep, path = line.partition(_SEPARATOR)
    if not sep or not digest or not path or " " in digest:
        raise ValueError("missing digest or path")
    return (_unescape(path) if escaped else path), digest


class TextHashStore(HashStore):
    """Flat-file backend: one "digest  path" line per record."""

    FILE_MODE = 0o640

    def __init__(self, file_path: Union[str, Path]) -> None:
        self.file_path = Path(file_path)
        self._lock = threading.Lock()
        self._records: dict[str, str] = {}
        self._open()

    def _open(self) -> None:
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            if not self.file_path.exists():
                self.file_path.touch(mode=self.FILE_MODE)
                os.chmod(self.file_path, self.FILE_MODE)
            self._records = self._load()
        except OSError as e:
            raise StoreError(f"Cannot open hash file {self.file_path}: {e}") from e
        logger.debug("Loaded %d records from %s", len(self._records), self.file_path)

    def _load(self) -> dict[str, str]:
        records: dict[str, str] = {}
        # Undecodable bytes in file names round-trip through surrogateescape.
        with open(self.file_path, encoding="utf-8", errors="surrogateescape", newline="\n") as f:
            for lineno, raw in enumerate(f, start=1):
                line = raw.rstrip("\n")
                if not line.strip():
                    continue
                try:
                    path, digest = parse_line(line)
                except ValueError as e:
                    raise StoreError(
                        f"Corrupt hash file {self.file_path} at line {lineno}: {line!r} ({e})"
                    ) from e
                records[path] = digest
        return records

    def _flush(self) -> None:
        """Rewrite the whole file atomically. Caller holds the lock."""
        directory = self.file_path.parent
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=".hashes-", dir=directory)
            try:
                with os.fdopen(
                    fd, "w", encoding="utf-8", errors="surrogateescape", newline="\n"
                ) as f:
                    for path, digest in self._records.items():
                        f.write(format_line(path, digest))
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_name, self.FILE_MODE)
                os.replace(tmp_name, self.file_path)
            except BaseException:
                with suppress(FileNotFoundError):
                    os.unlink(tmp_name)
                raise
        except (OSError, UnicodeError) as e:
            raise StoreError(f"Cannot write hash file {self.file_path}: {e}") from e

    def get(self, path: str) -> Tuple[Optional[str], bool]:
        with self._lock:
            digest = self._records.get(path)
        return digest, digest is not None

    def upsert(self, path: str, digest: str) -> None:
        with self._lock:
            previous = self._records.get(path)
            if previous == digest:
                return
            self._records[path] = digest
            try:
                self._flush()
            except StoreError:
                if previous is None:
                    del self._records[path]
                else:
                    self._records[path] = previous
                raise

    def delete(self, path: str) -> None:
        with self._lock:
            previous = self._records.pop(path, None)
            if previous is None:
                return
            try:
                self._flush()
            except StoreError:
                self._records[path] = previous
                raise

    def scan_all(self) -> Iterator[Tuple[str, str]]:
        with self._lock:
            snapshot = list(self._records.items())
        yield from snapshot

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def _key(path: str) -> bytes:
    # Bound as bytes so names that are not valid UTF-8 survive the round trip.
    return os.fsencode(path)


class SQLiteHashStore(HashStore):
    """Embedded relational backend."""

    SCHEMA = """
    PRAGMA journal_mode=WAL;
    CREATE TABLE IF NOT EXISTS hashes (
      path BLOB PRIMARY KEY,
      hash TEXT NOT NULL
    );
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create store directory for {self.db_path}: {e}") from e
        self.init_db()

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=30,
                check_same_thread=False,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open hash database {self.db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"Hash database error ({self.db_path}): {e}") from e
        finally:
            conn.close()

    def init_db(self) -> None:
        with self._conn() as conn:
            conn.executescript(self.SCHEMA)

    def get(self, path: str) -> Tuple[Optional[str], bool]:
        with self._conn() as conn:
            row = conn.execute("SELECT hash FROM hashes WHERE path = ?", (_key(path),)).fetchone()
        if row is None:
            return None, False
        return row[0], True

    def upsert(self, path: str, digest: str) -> None:
        with self._write_lock, self._conn() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO hashes (path, hash) VALUES (?, ?)",
                (_key(path), digest),
            )

    def delete(self, path: str) -> None:
        with self._write_lock, self._conn() as conn:
            conn.execute("DELETE FROM hashes WHERE path = ?", (_key(path),))

    def scan_all(self) -> Iterator[Tuple[str, str]]:
        with self._conn() as conn:
            cursor = conn.execute("SELECT path, hash FROM hashes ORDER BY path")
            while rows := cursor.fetchmany(_SCAN_BATCH):
                for key, digest in rows:
                    yield os.fsdecode(key), digest

    def __len__(self) -> int:
        with self._conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM hashes").fetchone()[0]


def store_file_name(service_id: str, storage_mode: str) -> str:
    suffix = "db" if storage_mode == STORAGE_SQLITE else "txt"
    return f"{service_id}_hashes.{suffix}"


def open_hash_store(storage_mode: str, state_dir: Union[str, Path], service_id: str) -> HashStore:
    """Open the backend selected by storage_mode under state_dir."""
    path = Path(state_dir) / store_file_name(service_id, storage_mode)
    if storage_mode == STORAGE_SQLITE:
        store: HashStore = SQLiteHashStore(path)
    elif storage_mode == STORAGE_TEXT:
        store = TextHashStore(path)
    else:
        raise StoreError(f"Unknown storage mode: {storage_mode}")
    logger.info("Hash store: %s (%s)", path, storage_mode)
    return store

"""Tests for tamperguard.core.hash_store (both backends)."""

import threading

import pytest

from tamperguard.core import hash_store
from tamperguard.core.hash_store import (
    SQLiteHashStore,
    StoreError,
    TextHashStore,
    open_hash_store,
    store_file_name,
)


class TestHashStoreContract:
    def test_upsert_then_get(self, store):
        store.upsert("/data/a.txt", "abc123")
        assert store.get("/data/a.txt") == ("abc123", True)

    def test_get_missing(self, store):
        digest, found = store.get("/data/missing")
        assert found is False
        assert digest is None

    def test_upsert_is_last_write_wins(self, store):
        store.upsert("/data/a.txt", "first")
        store.upsert("/data/a.txt", "second")
        store.upsert("/data/a.txt", "second")
        assert store.get("/data/a.txt") == ("second", True)
        assert len(store) == 1

    def test_delete(self, store):
        store.upsert("/data/a.txt", "abc")
        store.delete("/data/a.txt")
        assert store.get("/data/a.txt")[1] is False

    def test_delete_absent_is_noop(self, store):
        store.delete("/data/never-stored")
        assert len(store) == 0

    def test_scan_all(self, store):
        records = {"/data/a": "1", "/data/b": "2", "/data/with space.txt": "3"}
        for path, digest in records.items():
            store.upsert(path, digest)
        assert dict(store.scan_all()) == records

    def test_scan_all_is_restartable(self, store):
        store.upsert("/data/a", "1")
        store.upsert("/data/b", "2")
        first = store.scan_all()
        next(first)
        assert sorted(store.scan_all()) == [("/data/a", "1"), ("/data/b", "2")]

    def test_undecodable_file_name(self, store):
        path = "/data/bad\udcff.txt"
        store.upsert(path, "abc")
        assert store.get(path) == ("abc", True)
        assert dict(store.scan_all()) == {path: "abc"}

    def test_concurrent_writers_lose_nothing(self, store):
        def writer(prefix: str) -> None:
            for i in range(25):
                store.upsert(f"/data/{prefix}/{i}", f"{prefix}{i}")

        threads = [threading.Thread(target=writer, args=(name,)) for name in ("rt", "scan", "x")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        records = dict(store.scan_all())
        assert len(records) == 75
        assert records["/data/scan/24"] == "scan24"


class TestTextHashStore:
    def test_file_format(self, tmp_path):
        path = tmp_path / "hashes.txt"
        store = TextHashStore(path)
        store.upsert("/etc/hosts", "deadbeef")
        assert path.read_text() == "deadbeef  /etc/hosts\n"

    def test_reload_from_disk(self, tmp_path):
        path = tmp_path / "hashes.txt"
        TextHashStore(path).upsert("/etc/hosts", "deadbeef")
        reopened = TextHashStore(path)
        assert reopened.get("/etc/hosts") == ("deadbeef", True)

    def test_reads_sha256sum_output(self, tmp_path):
        path = tmp_path / "hashes.txt"
        path.write_text("aa11  /srv/one\nbb22  /srv/two words\n\n")
        store = TextHashStore(path)
        assert store.get("/srv/two words") == ("bb22", True)
        assert len(store) == 2

    @pytest.mark.parametrize(
        "name", ["evil\nname", "back\\slash", "cr\rname", "bad\udcff.txt", "plain name"]
    )
    def test_awkward_names_survive_reload(self, tmp_path, name):
        path = tmp_path / "hashes.txt"
        TextHashStore(path).upsert(f"/srv/{name}", "cafe")
        assert TextHashStore(path).get(f"/srv/{name}") == ("cafe", True)

    def test_escaped_line_format(self, tmp_path):
        path = tmp_path / "hashes.txt"
        TextHashStore(path).upsert("/srv/a\nb\\c", "cafe")
        assert path.read_text() == "\\cafe  /srv/a\\nb\\\\c\n"

    def test_reads_escaped_sha256sum_output(self, tmp_path):
        path = tmp_path / "hashes.txt"
        path.write_text("\\aa11  /srv/two\\nlines\n")
        assert TextHashStore(path).get("/srv/two\nlines") == ("aa11", True)

    def test_failed_write_leaves_memory_unchanged(self, tmp_path, monkeypatch):
        path = tmp_path / "hashes.txt"
        store = TextHashStore(path)
        store.upsert("/a", "1")

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(hash_store.os, "replace", broken_replace)
        with pytest.raises(StoreError):
            store.upsert("/b", "2")
        with pytest.raises(StoreError):
            store.upsert("/a", "changed")
        with pytest.raises(StoreError):
            store.delete("/a")
        monkeypatch.undo()

        assert dict(store.scan_all()) == {"/a": "1"}
        store.upsert("/c", "3")
        assert dict(TextHashStore(path).scan_all()) == {"/a": "1", "/c": "3"}

    def test_corrupt_file_is_fatal(self, tmp_path):
        path = tmp_path / "hashes.txt"
        path.write_text("this-line-has-no-separator\n")
        with pytest.raises(StoreError):
            TextHashStore(path)

    def test_file_permissions(self, tmp_path):
        path = tmp_path / "hashes.txt"
        store = TextHashStore(path)
        store.upsert("/a", "1")
        assert path.stat().st_mode & 0o777 == 0o640

    def test_no_temp_files_left_behind(self, tmp_path):
        store = TextHashStore(tmp_path / "hashes.txt")
        for i in range(5):
            store.upsert(f"/a/{i}", str(i))
        store.delete("/a/0")
        assert [p.name for p in tmp_path.iterdir()] == ["hashes.txt"]


class TestSQLiteHashStore:
    def test_persists_across_instances(self, tmp_path):
        db = tmp_path / "hashes.db"
        SQLiteHashStore(db).upsert("/etc/hosts", "cafe")
        assert SQLiteHashStore(db).get("/etc/hosts") == ("cafe", True)

    def test_undecodable_name_persists(self, tmp_path):
        db = tmp_path / "hashes.db"
        SQLiteHashStore(db).upsert("/srv/bad\udcff", "cafe")
        assert list(SQLiteHashStore(db).scan_all()) == [("/srv/bad\udcff", "cafe")]

    def test_unusable_database_is_fatal(self, tmp_path):
        db = tmp_path / "hashes.db"
        db.write_bytes(b"not a sqlite database" * 100)
        with pytest.raises(StoreError):
            SQLiteHashStore(db)


class TestOpenHashStore:
    def test_text_mode(self, tmp_path):
        store = open_hash_store("text", tmp_path, "etc_ssh")
        assert isinstance(store, TextHashStore)
        assert store.file_path == tmp_path / "etc_ssh_hashes.txt"

    def test_sqlite_mode(self, tmp_path):
        store = open_hash_store("sqlite3", tmp_path, "etc_ssh")
        assert isinstance(store, SQLiteHashStore)
        assert store.db_path == tmp_path / store_file_name("etc_ssh", "sqlite3")

    def test_unknown_mode(self, tmp_path):
        with pytest.raises(StoreError):
            open_hash_store("redis", tmp_path, "etc")

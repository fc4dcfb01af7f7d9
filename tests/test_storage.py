"""
Tests for reslib.storage — both backends, quota mapping and selection.
"""

import errno
import os
import sqlite3

import pytest

from reslib.config import StoreConfig
from reslib.errors import NotFoundError, QuotaExceededError, StorageError
from reslib.retention import KeepLatest
from reslib.storage import (
    FileSystemBackend,
    KeyValueBackend,
    build_backend,
    classify_error,
    detect_native_fs,
    is_quota_error,
)
from reslib.types import BinFileInfo


def _info(name, data=b""):
    return BinFileInfo(filename=name, size=len(data), checksum="00000000")


@pytest.fixture
def backend(tmp_path, backend_kind):
    if backend_kind == "filesystem":
        b = FileSystemBackend(tmp_path / "blobs")
    else:
        b = KeyValueBackend(tmp_path / "kv.sqlite3")
    yield b
    b.close()


class TestBackendContract:
    def test_save_and_load(self, backend):
        backend.save("database_1.bin", b"\x00\x01payload", _info("database_1.bin", b"123"))
        blob = backend.load("database_1.bin")
        assert blob.data == b"\x00\x01payload"
        assert blob.info.filename == "database_1.bin"
        assert blob.info.size == 3

    def test_overwrite(self, backend):
        backend.save("database_1.bin", b"old", _info("database_1.bin"))
        backend.save("database_1.bin", b"new", _info("database_1.bin"))
        assert backend.load("database_1.bin").data == b"new"
        assert backend.list() == ["database_1.bin"]

    def test_load_missing(self, backend):
        with pytest.raises(NotFoundError):
            backend.load("database_404.bin")

    def test_list_sorted_with_prefix(self, backend):
        for name in ("database_3.bin", "database_1.bin", "database_2.bin", "other_1.bin"):
            backend.save(name, b"x", _info(name))
        assert backend.list("database_") == [
            "database_1.bin", "database_2.bin", "database_3.bin",
        ]
        assert len(backend.list()) == 4

    def test_list_empty(self, backend):
        assert backend.list("database_") == []

    def test_delete(self, backend):
        backend.save("database_1.bin", b"x", _info("database_1.bin"))
        backend.delete("database_1.bin")
        assert backend.list() == []
        backend.delete("database_1.bin")  # absent: no error

    def test_clear_all(self, backend):
        for i in range(3):
            backend.save(f"database_{i}.bin", b"x", _info(f"database_{i}.bin"))
        backend.clear_all()
        assert backend.list() == []

    def test_rejects_path_names(self, backend):
        with pytest.raises(StorageError):
            backend.save("../escape.bin", b"x", _info("escape.bin"))

    def test_info_kind(self, backend, backend_kind):
        assert backend.info().backend_kind == backend_kind
        assert backend.info().location


class TestFileSystemBackend:
    def test_creates_directory_on_save(self, tmp_path):
        root = tmp_path / "deep" / "dir"
        b = FileSystemBackend(root)
        b.save("database_1.bin", b"x", _info("database_1.bin"))
        assert (root / "database_1.bin").is_file()
        assert (root / "database_1.bin.meta").is_file()
        assert not list(root.glob("*.tmp"))

    def test_missing_sidecar_is_tolerated(self, tmp_path):
        b = FileSystemBackend(tmp_path)
        (tmp_path / "database_1.bin").write_bytes(b"raw")
        blob = b.load("database_1.bin")
        assert blob.data == b"raw"
        assert blob.info is None

    def test_corrupt_sidecar(self, tmp_path):
        b = FileSystemBackend(tmp_path)
        b.save("database_1.bin", b"x", _info("database_1.bin"))
        (tmp_path / "database_1.bin.meta").write_text("{broken")
        with pytest.raises(StorageError, match="sidecar"):
            b.load("database_1.bin")

    def test_sidecar_not_utf8(self, tmp_path):
        b = FileSystemBackend(tmp_path)
        b.save("database_1.bin", b"x", _info("database_1.bin"))
        (tmp_path / "database_1.bin.meta").write_bytes(b"\xff\xfe{bad")
        with pytest.raises(StorageError, match="sidecar"):
            b.load("database_1.bin")

    def test_clear_all_keeps_foreign_files(self, tmp_path):
        b = FileSystemBackend(tmp_path)
        b.save("database_1.bin", b"x", _info("database_1.bin"))
        (tmp_path / "settings.json").write_text("{}")
        b.clear_all()
        assert (tmp_path / "settings.json").is_file()
        assert not (tmp_path / "database_1.bin.meta").exists()

    def test_list_ignores_sidecars(self, tmp_path):
        b = FileSystemBackend(tmp_path)
        b.save("database_1.bin", b"x", _info("database_1.bin"))
        assert b.list() == ["database_1.bin"]

    def test_list_missing_directory(self, tmp_path):
        assert FileSystemBackend(tmp_path / "nope").list() == []


class TestKeyValueBackend:
    def test_namespace(self, tmp_path):
        b = KeyValueBackend(tmp_path / "kv.sqlite3")
        b.save("database_1.bin", b"x", _info("database_1.bin"))
        keys = [r[0] for r in b._conn.execute("SELECT key FROM kv")]
        assert keys == ["encrypted_db_database_1.bin"]
        b.close()

    def test_clear_all_keeps_foreign_keys(self, tmp_path):
        b = KeyValueBackend(tmp_path / "kv.sqlite3")
        with b._conn:
            b._conn.execute("INSERT INTO kv (key, value) VALUES ('theme', 'dark')")
        b.save("database_1.bin", b"x", _info("database_1.bin"))
        b.clear_all()
        rows = b._conn.execute("SELECT key FROM kv").fetchall()
        assert rows == [("theme",)]
        b.close()

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "kv.sqlite3"
        b = KeyValueBackend(path)
        b.save("database_1.bin", b"durable", _info("database_1.bin"))
        b.close()
        b2 = KeyValueBackend(path)
        assert b2.load("database_1.bin").data == b"durable"
        b2.close()

    def test_used_bytes(self, tmp_path):
        b = KeyValueBackend(tmp_path / "kv.sqlite3")
        assert b.used_bytes() == 0
        b.save("database_1.bin", b"x" * 100, _info("database_1.bin"))
        assert b.used_bytes() > 100
        b.close()

    def test_quota_exceeded_keeps_earlier_blobs(self, tmp_path):
        b = KeyValueBackend(tmp_path / "kv.sqlite3", quota_bytes=64 * 1024)
        b.save("database_1.bin", b"small", _info("database_1.bin"))
        with pytest.raises(QuotaExceededError):
            b.save("database_2.bin", os.urandom(200_000), _info("database_2.bin"))
        assert b.list() == ["database_1.bin"]
        assert b.load("database_1.bin").data == b"small"
        b.close()

    def test_corrupt_entry(self, tmp_path):
        b = KeyValueBackend(tmp_path / "kv.sqlite3")
        with b._conn:
            b._conn.execute(
                "INSERT INTO kv (key, value) VALUES ('encrypted_db_database_1.bin', 'nope')"
            )
        with pytest.raises(StorageError, match="Corrupt"):
            b.load("database_1.bin")
        b.close()

    def test_info_reports_quota(self, tmp_path):
        b = KeyValueBackend(tmp_path / "kv.sqlite3", quota_bytes=128 * 1024)
        assert b.info().quota_bytes == 128 * 1024
        b.close()


class TestQuotaClassification:
    def _sqlite_error(self, name=None, code=None):
        exc = sqlite3.OperationalError("database or disk is full")
        exc.sqlite_errorname = name
        exc.sqlite_errorcode = code
        return exc

    def test_sqlite_by_name(self):
        assert is_quota_error(self._sqlite_error(name="SQLITE_FULL"))

    def test_sqlite_by_code(self):
        assert is_quota_error(self._sqlite_error(code=13))

    def test_sqlite_other_error(self):
        assert not is_quota_error(self._sqlite_error(name="SQLITE_BUSY", code=5))

    def test_oserror_enospc(self):
        assert is_quota_error(OSError(errno.ENOSPC, "No space left on device"))

    def test_oserror_eacces_is_not_quota(self):
        # EACCES is 13, the same number as SQLITE_FULL
        assert not is_quota_error(OSError(errno.EACCES, "Permission denied"))

    def test_unrelated_exception(self):
        assert not is_quota_error(ValueError("full"))

    def test_classify(self):
        q = classify_error(OSError(errno.ENOSPC, "full"), "write")
        assert isinstance(q, QuotaExceededError)
        other = classify_error(OSError(errno.EIO, "io"), "write")
        assert type(other) is StorageError


class TestBackendSelection:
    def test_auto_native(self, tmp_path):
        cfg = StoreConfig(data_dir=str(tmp_path / "d"), kv_path=str(tmp_path / "kv.db"))
        b = build_backend(cfg, native_fs=True)
        assert isinstance(b, FileSystemBackend)

    def test_auto_without_native(self, tmp_path):
        cfg = StoreConfig(data_dir=str(tmp_path / "d"), kv_path=str(tmp_path / "kv.db"))
        b = build_backend(cfg, native_fs=False)
        assert isinstance(b, KeyValueBackend)
        b.close()

    def test_forced_backend_ignores_signal(self, tmp_path):
        cfg = StoreConfig(data_dir=str(tmp_path), kv_path=str(tmp_path / "kv.db"),
                          backend="kv")
        b = build_backend(cfg, native_fs=True)
        assert isinstance(b, KeyValueBackend)
        b.close()

    def test_unknown_backend(self, tmp_path):
        cfg = StoreConfig(data_dir=str(tmp_path), backend="cloud")
        with pytest.raises(ValueError, match="Unknown storage backend"):
            build_backend(cfg)

    def test_detect_native_fs(self, tmp_path):
        assert detect_native_fs(tmp_path / "new")
        assert (tmp_path / "new").is_dir()

    def test_detect_native_fs_blocked_by_file(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        assert not detect_native_fs(blocker / "sub")


class TestRetention:
    def test_select_expired(self):
        names = [f"database_{i}.bin" for i in (5, 1, 3, 2, 4)]
        assert KeepLatest(2).select_expired(names) == [
            "database_1.bin", "database_2.bin", "database_3.bin",
        ]

    def test_keep_all(self):
        assert KeepLatest(0).select_expired(["a", "b"]) == []

    def test_apply(self, backend):
        for i in range(1, 5):
            backend.save(f"database_{i}.bin", b"x", _info(f"database_{i}.bin"))
        removed = KeepLatest(1).apply(backend, "database_")
        assert removed == ["database_1.bin", "database_2.bin", "database_3.bin"]
        assert backend.list() == ["database_4.bin"]

    def test_apply_survives_listing_failure(self, tmp_path, caplog):
        class BrokenListing(FileSystemBackend):
            def list(self, prefix=""):
                raise StorageError("listing failed")

        b = BrokenListing(tmp_path)
        b.save("database_1.bin", b"x", _info("database_1.bin"))
        with caplog.at_level("WARNING", logger="reslib.retention"):
            assert KeepLatest(1).apply(b, "database_") == []
        assert "could not list" in caplog.text
        assert (tmp_path / "database_1.bin").is_file()

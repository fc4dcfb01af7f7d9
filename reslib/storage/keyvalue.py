"""
Key-value backend: a quota-limited persistent string store.

Backed by a single SQLite table ``kv(key, value)``.  Every key lives under
the ``encrypted_db_`` namespace and every value is a JSON string
``{"data": <base64>, "info": {...}}``.  The quota is enforced by SQLite
itself through ``PRAGMA max_page_count``; exceeding it raises SQLITE_FULL,
which surfaces as QuotaExceededError.  A failed write is rolled back, so
blobs stored earlier stay readable.

Thread safety: check_same_thread=False with an explicit lock.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import List

from reslib.errors import NotFoundError, StorageError
from reslib.storage.base import (
    StorageBackend,
    StorageInfo,
    StoredBlob,
    check_name,
    classify_error,
)
from reslib.types import BinFileInfo

logger = logging.getLogger(__name__)

KEY_PREFIX = "encrypted_db_"
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class KeyValueBackend(StorageBackend):
    """Blobs as base64 JSON strings in a namespaced key-value table."""

    kind = "kv"

    def __init__(
        self,
        db_path: Path | str,
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
        namespace: str = KEY_PREFIX,
    ):
        self._db_path = Path(db_path).expanduser()
        self._quota_bytes = quota_bytes
        self._namespace = namespace
        self._lock = threading.Lock()
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.executescript(_SCHEMA_SQL)
            self._apply_quota()
        except (OSError, sqlite3.Error) as exc:
            raise classify_error(exc, f"opening key-value store {self._db_path}") from exc
        logger.info(
            f"KeyValueBackend initialized: {self._db_path} "
            f"(quota={self._quota_bytes} bytes)"
        )

    def _apply_quota(self) -> None:
        page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
        pages = max(1, self._quota_bytes // page_size)
        # SQLite never lowers max_page_count below the current page count
        self._conn.execute(f"PRAGMA max_page_count = {int(pages)}")

    def _key(self, name: str) -> str:
        return self._namespace + check_name(name)

    def save(self, name: str, data: bytes, info: BinFileInfo) -> None:
        value = json.dumps({
            "data": base64.b64encode(data).decode("ascii"),
            "info": info.to_dict(),
        })
        key = self._key(name)
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                        (key, value),
                    )
            except sqlite3.Error as exc:
                raise classify_error(exc, f"key-value write of {name}") from exc
        logger.debug(f"Stored {key} ({len(data)} bytes)")

    def load(self, name: str) -> StoredBlob:
        key = self._key(name)
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT value FROM kv WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.Error as exc:
                raise classify_error(exc, f"key-value read of {name}") from exc
        if row is None:
            raise NotFoundError(f"File not found: {name}")
        try:
            stored = json.loads(row[0])
            data = base64.b64decode(stored["data"], validate=True)
            info = stored.get("info")
            return StoredBlob(
                data=data,
                info=BinFileInfo.from_dict(info) if info else None,
            )
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError,
                binascii.Error) as exc:
            raise StorageError(f"Corrupt key-value entry {key}: {exc}") from exc

    def delete(self, name: str) -> None:
        key = self._key(name)
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            except sqlite3.Error as exc:
                raise classify_error(exc, f"key-value delete of {name}") from exc

    def list(self, prefix: str = "") -> List[str]:
        full = self._namespace + prefix
        with self._lock:
            try:
                rows = self._conn.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(full), full),
                ).fetchall()
            except sqlite3.Error as exc:
                raise classify_error(exc, "key-value listing") from exc
        return [row[0][len(self._namespace):] for row in rows]

    def clear_all(self) -> None:
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute(
                        "DELETE FROM kv WHERE substr(key, 1, ?) = ?",
                        (len(self._namespace), self._namespace),
                    )
            except sqlite3.Error as exc:
                raise classify_error(exc, "key-value clear") from exc
        logger.info(f"Removed {cur.rowcount} key(s) from {self._db_path}")

    def used_bytes(self) -> int:
        """Bytes currently taken by namespaced values."""
        with self._lock:
            row = self._conn.execute(
                "SELECT COALESCE(SUM(length(key) + length(value)), 0) FROM kv "
                "WHERE substr(key, 1, ?) = ?",
                (len(self._namespace), self._namespace),
            ).fetchone()
        return int(row[0])

    def info(self) -> StorageInfo:
        return StorageInfo(
            backend_kind=self.kind,
            location=str(self._db_path),
            quota_bytes=self._quota_bytes,
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

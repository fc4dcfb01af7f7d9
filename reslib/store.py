"""
Document Store — Encrypted Versioned Catalog

Holds the catalog (categories, resources, tags, resource-tag links) in
memory and persists the WHOLE envelope on every mutation:

    mutate -> touch metadata -> JSON -> gzip -> AES-GCM -> CRC-32 -> backend

Each write goes to a fresh, timestamp-derived blob name
(``database_<epoch-ms>.bin``); loading picks the greatest name.  Superseded
blobs are pruned by the retention policy, not by the pipeline.

Concurrency: single event loop.  Mutations apply to the in-memory envelope
synchronously, before the coroutine suspends.  Persistence is serialized by
one FIFO asyncio.Lock and the envelope is snapshotted after the lock is
acquired, so the newest blob always reflects every mutation issued so far.
Backend, compression and crypto work runs in worker threads.

Failure policy: write-path errors propagate (no retry, no rollback of the
in-memory mutation).  Load-path errors never propagate: the store falls
back to an empty envelope and keeps the error on ``last_error``.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from reslib import codec, crypto
from reslib.config import ResLibConfig
from reslib.errors import (
    CorruptionDetectedError,
    EnvelopeFormatError,
    QuotaExceededError,
    ResLibError,
    StorageError,
    StoreNotLoadedError,
)
from reslib.keys import KeyManager
from reslib.retention import KeepLatest
from reslib.storage import StorageBackend, StorageInfo, build_backend
from reslib.types import (
    BinFileInfo,
    Category,
    Database,
    DatabaseMetadata,
    Resource,
    ResourceTag,
    Tag,
    _now_iso,
    generate_id,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _coerce(cls, obj):
    """Accept an entity instance or a plain dict."""
    if isinstance(obj, cls):
        return copy.deepcopy(obj)
    if isinstance(obj, dict):
        return cls.from_dict(obj)
    raise TypeError(f"Expected {cls.__name__} or dict, got {type(obj).__name__}")


def _upsert(rows: List[T], item: T, key: Callable[[T], Any]) -> bool:
    """Replace the row with the same key, else append. True if appended."""
    k = key(item)
    for i, row in enumerate(rows):
        if key(row) == k:
            rows[i] = item
            return False
    rows.append(item)
    return True


# ---------------------------------------------------------------------------
# DocumentStore
# ---------------------------------------------------------------------------


class DocumentStore:
    """
    Encrypted, versioned, compressed key-value document store.

    Two states: unloaded (fresh, nothing read) and loaded.  load_database(),
    clear_database() and import_database() leave the store loaded; every
    other CRUD call requires it.
    """

    def __init__(
        self,
        config: Optional[ResLibConfig] = None,
        *,
        backend: Optional[StorageBackend] = None,
        key_manager: Optional[KeyManager] = None,
        retention: Optional[KeepLatest] = None,
    ):
        self._config = config or ResLibConfig()
        self._backend = backend or build_backend(self._config.store)
        self._keys = key_manager or KeyManager(self._config)
        self._retention = retention or KeepLatest(self._config.retention.keep_latest)
        self._prefix = self._config.store.file_prefix
        self._suffix = self._config.store.file_suffix
        self._data = Database.empty()
        self._loaded = False
        self._write_lock = asyncio.Lock()
        self._last_stamp = 0
        self.last_error: Optional[ResLibError] = None
        self.loaded_from: Optional[str] = None

    # -- State -------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise StoreNotLoadedError(
                "Database not loaded: call load_database() first"
            )

    def close(self) -> None:
        """Release the storage backend."""
        self._backend.close()

    # -- Naming ------------------------------------------------------------

    def _next_name(self) -> str:
        """Fresh blob name; strictly greater than any name used or loaded."""
        stamp = int(time.time() * 1000)
        if stamp <= self._last_stamp:
            stamp = self._last_stamp + 1
        self._last_stamp = stamp
        return f"{self._prefix}{stamp}{self._suffix}"

    def _observe_name(self, name: str) -> None:
        digits = name[len(self._prefix):len(name) - len(self._suffix)]
        if digits.isdigit():
            self._last_stamp = max(self._last_stamp, int(digits))

    # -- Write path --------------------------------------------------------

    def _write_blob(self, name: str, payload: Dict[str, Any], key: str) -> BinFileInfo:
        """Serialize, compress, encrypt, checksum and store (worker thread)."""
        cfg = self._config.crypto
        packed = codec.compress(codec.encode_envelope(payload), cfg.compression_enabled)
        encrypted = crypto.encrypt(packed, key, cfg.kdf_iterations)
        if len(encrypted) > cfg.max_file_size:
            raise StorageError(
                f"Database blob is {len(encrypted)} bytes, "
                f"over the {cfg.max_file_size} byte limit"
            )
        now = _now_iso()
        info = BinFileInfo(
            filename=name,
            size=len(encrypted),
            checksum=codec.checksum(encrypted),
            created_at=now,
            updated_at=now,
        )
        self._backend.save(name, encrypted, info)
        self._retention.apply(self._backend, self._prefix)
        return info

    async def save_database(self) -> BinFileInfo:
        """Persist the current envelope as a new blob.

        Raises:
            QuotaExceededError: The backend is full; earlier blobs are intact.
            StorageError, CryptoError: Any other write failure.
            StoreNotLoadedError: load_database() has not run yet.
        """
        self._require_loaded()
        async with self._write_lock:
            self._data.touch()
            payload = self._data.to_dict()
            name = self._next_name()
            try:
                key = await asyncio.to_thread(self._keys.get_key)
                info = await asyncio.to_thread(self._write_blob, name, payload, key)
            except QuotaExceededError as exc:
                logger.warning(f"Write of {name} refused: {exc}")
                raise
            except ResLibError as exc:
                logger.error(f"Write of {name} failed: {exc}")
                raise
            logger.debug(
                f"Persisted {name} ({info.size} bytes, "
                f"{self._data.metadata.total_items} resource(s))"
            )
            return info

    # -- Read path ---------------------------------------------------------

    def _read_blob(self, name: str, key: str) -> Database:
        """Fetch, verify, decrypt, decompress and parse (worker thread)."""
        blob = self._backend.load(name)
        if blob.info is not None and blob.info.checksum:
            actual = codec.checksum(blob.data)
            if actual != blob.info.checksum:
                raise CorruptionDetectedError(
                    f"Database file corruption detected in {name} "
                    f"(checksum {actual} != {blob.info.checksum})"
                )
        packed = crypto.decrypt(blob.data, key, self._config.crypto.kdf_iterations)
        raw = codec.decompress(packed)
        return Database.from_dict(codec.decode_envelope(raw))

    async def load_database(self) -> bool:
        """Hydrate from the most recent blob.

        Returns True if a snapshot was loaded.  With no blob at all the store
        becomes loaded and empty.  On any failure the store also becomes
        loaded and empty, and the error is kept on ``last_error``.
        """
        async with self._write_lock:
            self.last_error = None
            self.loaded_from = None
            try:
                names = await asyncio.to_thread(self._backend.list, self._prefix)
                if not names:
                    self._data = Database.empty()
                    logger.info("No database snapshot found, starting empty")
                    return False
                name = max(names)
                self._observe_name(name)
                key = await asyncio.to_thread(self._keys.get_key)
                self._data = await asyncio.to_thread(self._read_blob, name, key)
            except ResLibError as exc:
                logger.error(f"Failed to load database: {exc}")
                self.last_error = exc
                self._data = Database.empty()
                return False
            finally:
                self._loaded = True
            self.loaded_from = name
            logger.info(
                f"Database loaded from {name} "
                f"({len(self._data.resources)} resource(s))"
            )
            return True

    # -- Categories --------------------------------------------------------

    async def get_categories(self) -> List[Category]:
        self._require_loaded()
        return copy.deepcopy(self._data.categories)

    async def save_category(self, category: Union[Category, Dict[str, Any]]) -> None:
        self._require_loaded()
        _upsert(self._data.categories, _coerce(Category, category), lambda c: c.id)
        await self.save_database()

    async def delete_category(self, category_id: str) -> None:
        """Delete a category and every resource filed under it.

        Resources filed under the category or under one of its direct
        subcategories (by category_id or subcategory_id) are removed, along
        with their resource-tag rows.  The subcategory rows themselves are
        kept, with parent_id unchanged.
        """
        self._require_loaded()
        data = self._data
        scope = {category_id}
        scope.update(c.id for c in data.categories if c.parent_id == category_id)
        data.categories = [c for c in data.categories if c.id != category_id]
        doomed = {
            r.id for r in data.resources
            if r.category_id in scope or r.subcategory_id in scope
        }
        data.resources = [r for r in data.resources if r.id not in doomed]
        data.resource_tags = [
            rt for rt in data.resource_tags if rt.resource_id not in doomed
        ]
        await self.save_database()

    # -- Resources ---------------------------------------------------------

    async def get_resources(self) -> List[Resource]:
        self._require_loaded()
        return copy.deepcopy(self._data.resources)

    async def get_resources_by_category(self, category_id: str) -> List[Resource]:
        self._require_loaded()
        return copy.deepcopy(
            [r for r in self._data.resources if r.category_id == category_id]
        )

    async def get_resources_by_subcategory(self, subcategory_id: str) -> List[Resource]:
        self._require_loaded()
        return copy.deepcopy(
            [r for r in self._data.resources if r.subcategory_id == subcategory_id]
        )

    async def save_resource(self, resource: Union[Resource, Dict[str, Any]]) -> None:
        self._require_loaded()
        _upsert(self._data.resources, _coerce(Resource, resource), lambda r: r.id)
        await self.save_database()

    async def delete_resource(self, resource_id: str) -> None:
        self._require_loaded()
        data = self._data
        data.resources = [r for r in data.resources if r.id != resource_id]
        data.resource_tags = [
            rt for rt in data.resource_tags if rt.resource_id != resource_id
        ]
        await self.save_database()

    # -- Tags --------------------------------------------------------------

    async def get_tags(self) -> List[Tag]:
        self._require_loaded()
        return copy.deepcopy(self._data.tags)

    async def save_tag(self, tag: Union[Tag, Dict[str, Any]]) -> None:
        self._require_loaded()
        _upsert(self._data.tags, _coerce(Tag, tag), lambda t: t.id)
        await self.save_database()

    async def delete_tag(self, tag_id: str) -> None:
        self._require_loaded()
        data = self._data
        data.tags = [t for t in data.tags if t.id != tag_id]
        data.resource_tags = [rt for rt in data.resource_tags if rt.tag_id != tag_id]
        await self.save_database()

    # -- Resource tags -----------------------------------------------------

    async def get_resource_tags(self) -> List[ResourceTag]:
        self._require_loaded()
        return copy.deepcopy(self._data.resource_tags)

    async def save_resource_tag(
        self, resource_tag: Union[ResourceTag, Dict[str, Any]],
    ) -> None:
        self._require_loaded()
        _upsert(
            self._data.resource_tags, _coerce(ResourceTag, resource_tag),
            lambda rt: rt.key,
        )
        await self.save_database()

    async def delete_resource_tag(self, resource_id: str, tag_id: str) -> None:
        self._require_loaded()
        self._data.resource_tags = [
            rt for rt in self._data.resource_tags
            if rt.key != (resource_id, tag_id)
        ]
        await self.save_database()

    # -- Utilities ---------------------------------------------------------

    def generate_id(self) -> str:
        """New unique entity ID. Callers assign it before save_*()."""
        return generate_id()

    async def clear_database(self) -> None:
        """Reset to an empty envelope and delete every owned blob."""
        self._data = Database.empty()
        self._loaded = True
        self.loaded_from = None
        async with self._write_lock:
            await asyncio.to_thread(self._backend.clear_all)
        logger.info("Database cleared")

    async def export_database(self) -> str:
        """Plaintext JSON of the whole envelope (unencrypted backup)."""
        return json.dumps(self._data.to_dict(), indent=2, ensure_ascii=False)

    async def import_database(self, json_data: str) -> None:
        """Replace the envelope with a plaintext export and persist once.

        Raises:
            EnvelopeFormatError: Not JSON, or not an envelope. Nothing changes.
        """
        try:
            parsed = json.loads(json_data)
        except json.JSONDecodeError as exc:
            raise EnvelopeFormatError(f"Import is not valid JSON: {exc}") from exc
        self._data = Database.from_dict(parsed)
        self._loaded = True
        await self.save_database()

    def get_metadata(self) -> DatabaseMetadata:
        return dataclasses.replace(self._data.metadata)

    def get_storage_info(self) -> StorageInfo:
        return self._backend.info()

    async def list_snapshots(self) -> List[str]:
        """Blob names currently stored, oldest first."""
        return await asyncio.to_thread(self._backend.list, self._prefix)

    async def stats(self) -> Dict[str, Any]:
        """Collection counts plus storage diagnostics."""
        snapshots = await self.list_snapshots()
        return {
            "loaded": self._loaded,
            "categories": len(self._data.categories),
            "subcategories": sum(1 for c in self._data.categories if c.is_subcategory),
            "resources": len(self._data.resources),
            "tags": len(self._data.tags),
            "resource_tags": len(self._data.resource_tags),
            "snapshots": len(snapshots),
            "latest_snapshot": snapshots[-1] if snapshots else None,
            "metadata": self._data.metadata.to_dict(),
            "storage": self._backend.info().to_dict(),
        }

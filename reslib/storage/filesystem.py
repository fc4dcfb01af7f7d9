"""Filesystem backend: one file per blob plus a ``.meta`` JSON sidecar."""

from __future__ import annotations

import json
import logging
import os
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

META_SUFFIX = ".meta"
TMP_SUFFIX = ".tmp"


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Atomically write *data* into *path* (tmp file, fsync, rename)."""
    tmp_path = path.with_name(path.name + TMP_SUFFIX)
    try:
        with tmp_path.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class FileSystemBackend(StorageBackend):
    """Blobs as files under a per-user data directory."""

    kind = "filesystem"

    def __init__(self, root: Path | str, suffix: str = ".bin"):
        self.root = Path(root).expanduser()
        self.suffix = suffix

    def _ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        return self.root / check_name(name)

    def save(self, name: str, data: bytes, info: BinFileInfo) -> None:
        path = self._path(name)
        try:
            self._ensure_root()
            atomic_write_bytes(path, data)
            sidecar = json.dumps(info.to_dict(), ensure_ascii=False)
            atomic_write_bytes(
                path.with_name(path.name + META_SUFFIX), sidecar.encode("utf-8"),
            )
        except OSError as exc:
            raise classify_error(exc, f"file system write of {name}") from exc
        logger.debug(f"Wrote {path} ({len(data)} bytes)")

    def load(self, name: str) -> StoredBlob:
        path = self._path(name)
        if not path.is_file():
            raise NotFoundError(f"File not found: {name}")
        meta_path = path.with_name(path.name + META_SUFFIX)
        try:
            data = path.read_bytes()
            info = None
            if meta_path.is_file():
                info = BinFileInfo.from_dict(
                    json.loads(meta_path.read_text(encoding="utf-8"))
                )
        except OSError as exc:
            raise classify_error(exc, f"file system read of {name}") from exc
        except (UnicodeDecodeError, json.JSONDecodeError, TypeError,
                AttributeError) as exc:
            raise StorageError(f"Corrupt metadata sidecar for {name}: {exc}") from exc
        return StoredBlob(data=data, info=info)

    def delete(self, name: str) -> None:
        path = self._path(name)
        try:
            path.unlink(missing_ok=True)
            path.with_name(path.name + META_SUFFIX).unlink(missing_ok=True)
        except OSError as exc:
            raise classify_error(exc, f"file system delete of {name}") from exc

    def list(self, prefix: str = "") -> List[str]:
        if not self.root.is_dir():
            return []
        try:
            names = [
                p.name for p in self.root.iterdir()
                if p.name.startswith(prefix) and p.name.endswith(self.suffix)
                and p.is_file()
            ]
        except OSError as exc:
            raise classify_error(exc, "file system listing") from exc
        return sorted(names)

    def _owns(self, filename: str) -> bool:
        for ending in (self.suffix, self.suffix + META_SUFFIX):
            if filename.endswith(ending) or filename.endswith(ending + TMP_SUFFIX):
                return True
        return False

    def clear_all(self) -> None:
        if not self.root.is_dir():
            return
        removed = 0
        try:
            for p in self.root.iterdir():
                if p.is_file() and self._owns(p.name):
                    p.unlink()
                    removed += 1
        except OSError as exc:
            raise classify_error(exc, "file system clear") from exc
        logger.info(f"Removed {removed} file(s) from {self.root}")

    def info(self) -> StorageInfo:
        return StorageInfo(backend_kind=self.kind, location=str(self.root))

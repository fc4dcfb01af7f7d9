"""
Storage backends.

build_backend() selects the variant once, at construction: the filesystem
backend when native file I/O is available for the data directory, the
key-value backend otherwise (or whichever the configuration forces).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from reslib.config import StoreConfig
from reslib.storage.base import (
    StorageBackend,
    StorageInfo,
    StoredBlob,
    classify_error,
    is_quota_error,
)
from reslib.storage.filesystem import FileSystemBackend
from reslib.storage.keyvalue import KeyValueBackend

logger = logging.getLogger(__name__)

__all__ = [
    "StorageBackend",
    "StorageInfo",
    "StoredBlob",
    "FileSystemBackend",
    "KeyValueBackend",
    "build_backend",
    "classify_error",
    "detect_native_fs",
    "is_quota_error",
]


def detect_native_fs(path: Path | str) -> bool:
    """Probe whether native file I/O is usable at *path*.

    The directory must exist (or be creatable) and be writable.
    """
    root = Path(path).expanduser()
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.debug(f"Native file I/O unavailable at {root}: {exc}")
        return False
    return root.is_dir() and os.access(root, os.W_OK | os.X_OK)


def build_backend(
    config: StoreConfig, *, native_fs: Optional[bool] = None,
) -> StorageBackend:
    """
    Factory: create the StorageBackend the configuration asks for.

    Args:
        config: Store section of the configuration.
        native_fs: Capability signal override. None = probe the data dir.

    Returns:
        StorageBackend instance

    Raises:
        ValueError: Unknown backend
    """
    backend = config.backend
    if backend == "auto":
        if native_fs is None:
            native_fs = detect_native_fs(config.data_path)
        backend = "filesystem" if native_fs else "kv"
        logger.debug(f"Backend auto-selected: {backend}")

    if backend == "filesystem":
        return FileSystemBackend(config.data_path, suffix=config.file_suffix)

    elif backend == "kv":
        return KeyValueBackend(config.kv_file, quota_bytes=config.kv_quota_bytes)

    else:
        raise ValueError(
            f"Unknown storage backend: {backend!r}. Supported: 'auto', 'filesystem', 'kv'"
        )

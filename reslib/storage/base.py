"""
Abstract storage backend interface.

Defines the StorageBackend ABC with two backends:
- FileSystemBackend (native file I/O, per-user data directory)
- KeyValueBackend (quota-limited persistent key-value store)

A backend stores named binary blobs, each with a small JSON sidecar
(BinFileInfo).  Backends are synchronous; the document store runs them on a
worker thread.  Failures are raised as typed errors from reslib.errors and
never retried here.
"""

from __future__ import annotations

import errno
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from reslib.errors import QuotaExceededError, StorageError
from reslib.types import BinFileInfo

# Quota signals by name and by numeric code; hosts disagree on which they set
SQLITE_QUOTA_NAMES = {"SQLITE_FULL"}
SQLITE_QUOTA_CODES = {sqlite3.SQLITE_FULL}
OS_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", 122)}


@dataclass
class StoredBlob:
    """A blob read back from a backend, with its sidecar when present."""

    data: bytes
    info: Optional[BinFileInfo] = None


@dataclass
class StorageInfo:
    """Diagnostics about the active backend."""

    backend_kind: str
    location: Optional[str] = None
    quota_bytes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_quota_error(exc: BaseException) -> bool:
    """True if *exc* is the platform's capacity-exhausted signal.

    Matches SQLite's SQLITE_FULL (sqlite_errorname / sqlite_errorcode) and
    OSError ENOSPC/EDQUOT (errno).
    """
    if isinstance(exc, sqlite3.Error):
        if getattr(exc, "sqlite_errorname", None) in SQLITE_QUOTA_NAMES:
            return True
        code = getattr(exc, "sqlite_errorcode", None)
        # Extended result codes keep the primary code in the low byte
        return code is not None and (code & 0xFF) in SQLITE_QUOTA_CODES
    if isinstance(exc, OSError):
        return exc.errno in OS_QUOTA_ERRNOS
    return False


def classify_error(exc: BaseException, action: str) -> StorageError:
    """Wrap a low-level exception into QuotaExceededError or StorageError."""
    if is_quota_error(exc):
        return QuotaExceededError(
            f"Storage quota exceeded during {action}: {exc}. "
            "Free some space or use a smaller dataset."
        )
    return StorageError(f"{action} failed: {exc}")


class StorageBackend(ABC):
    """
    Abstract interface for named blob storage.

    Names are flat (no path separators).  ``list(prefix)`` is what the
    document store uses to discover snapshot generations.
    """

    kind: str = "abstract"

    @abstractmethod
    def save(self, name: str, data: bytes, info: BinFileInfo) -> None:
        """Durably write *data* under *name* together with its sidecar.

        Raises:
            QuotaExceededError: The medium is full.
            StorageError: Any other failure.
        """

    @abstractmethod
    def load(self, name: str) -> StoredBlob:
        """Read a blob and its sidecar.

        Raises:
            NotFoundError: No blob with that name.
            StorageError: Unreadable blob or corrupt sidecar.
        """

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove a blob and its sidecar. Absent names are not an error."""

    @abstractmethod
    def list(self, prefix: str = "") -> List[str]:
        """Sorted blob names starting with *prefix*."""

    @abstractmethod
    def clear_all(self) -> None:
        """Remove every blob this backend owns."""

    @abstractmethod
    def info(self) -> StorageInfo:
        """Backend kind and location, for diagnostics only."""

    def close(self) -> None:
        """Release resources. Default: nothing to release."""


def check_name(name: str) -> str:
    """Reject names that could escape the backend namespace."""
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        raise StorageError(f"Invalid blob name: {name!r}")
    return name

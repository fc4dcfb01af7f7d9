"""
Snapshot Retention

Every write produces a new blob; a retention policy decides which older
generations to drop afterwards.  Policies act on the backend only, so the
compaction rule can change without touching the persistence pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from reslib.errors import StorageError
from reslib.storage.base import StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class KeepLatest:
    """Keep the newest *count* blobs under a prefix. count=0 keeps all."""

    count: int = 5

    def select_expired(self, names: List[str]) -> List[str]:
        """Names to delete, oldest first. Names sort by generation."""
        if self.count <= 0:
            return []
        ordered = sorted(names)
        return ordered[:-self.count] if len(ordered) > self.count else []

    def apply(self, backend: StorageBackend, prefix: str) -> List[str]:
        """Delete expired generations. Returns the names removed.

        A failed listing or delete is logged and skipped: the fresh blob is already
        durable, so pruning is best effort.
        """
        removed: List[str] = []
        try:
            names = backend.list(prefix)
        except StorageError as exc:
            logger.warning(f"Retention: could not list blobs: {exc}")
            return removed
        for name in self.select_expired(names):
            try:
                backend.delete(name)
                removed.append(name)
            except StorageError as exc:
                logger.warning(f"Retention: could not delete {name}: {exc}")
        if removed:
            logger.debug(f"Retention removed {len(removed)} blob(s)")
        return removed

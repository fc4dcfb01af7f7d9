"""
Export/Import — Plaintext JSON Backup and Restore

Export writes the whole envelope as indented JSON.  The output is NOT
encrypted: treat backups as sensitive.  Import validates that the input is
an envelope before anything is replaced, then swaps it in wholesale and
persists once (one new encrypted blob).

stdout purity: export to stdout writes only JSON. Progress goes to stderr.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, IO, Optional

from reslib.errors import EnvelopeFormatError
from reslib.store import DocumentStore
from reslib.types import Database


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


@dataclass
class ImportResult:
    """Counts from an import operation."""

    categories: int = 0
    resources: int = 0
    tags: int = 0
    resource_tags: int = 0
    dry_run: bool = False

    @classmethod
    def from_database(cls, db: Database, dry_run: bool = False) -> ImportResult:
        return cls(
            categories=len(db.categories),
            resources=len(db.resources),
            tags=len(db.tags),
            resource_tags=len(db.resource_tags),
            dry_run=dry_run,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "categories": self.categories,
            "resources": self.resources,
            "tags": self.tags,
            "resource_tags": self.resource_tags,
            "dry_run": self.dry_run,
        }


# ---------------------------------------------------------------------------
# Default log
# ---------------------------------------------------------------------------


def _default_log(msg: str) -> None:
    """Log to stderr."""
    print(msg, file=sys.stderr)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


async def export_to_file(
    store: DocumentStore,
    output: IO[str] | str = sys.stdout,
    *,
    log: Callable[[str], None] = _default_log,
) -> int:
    """Export the envelope as plaintext JSON.

    Args:
        store: Source store (loaded).
        output: File path (str) or writable stream (default: stdout).
        log: Callable for progress messages (default: stderr).

    Returns:
        Number of resources exported.
    """
    text = await store.export_database()
    if isinstance(output, str):
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(text + "\n")
    else:
        output.write(text + "\n")

    count = store.get_metadata().total_items
    log(f"[export] {count} resource(s) exported")
    return count


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def read_envelope(source: IO[str] | str) -> str:
    """Read and validate an export. Returns the JSON text.

    Raises:
        EnvelopeFormatError: Malformed JSON or not an envelope.
    """
    if isinstance(source, str):
        with open(source, "r", encoding="utf-8") as fh:
            text = fh.read()
    else:
        text = source.read()
    try:
        Database.from_dict(json.loads(text))
    except json.JSONDecodeError as e:
        raise EnvelopeFormatError(f"Malformed JSON: {e}") from e
    return text


async def import_from_file(
    store: DocumentStore,
    source: IO[str] | str,
    *,
    dry_run: bool = False,
    log: Optional[Callable[[str], None]] = _default_log,
) -> ImportResult:
    """Replace the store contents with an export.

    Args:
        store: Target store.
        source: File path (str) or readable IO stream.
        dry_run: Validate and count without writing.
        log: Callable for progress messages (default: stderr).

    Returns:
        ImportResult with per-collection counts.
    """
    text = read_envelope(source)
    result = ImportResult.from_database(Database.from_dict(json.loads(text)), dry_run)
    if not dry_run:
        await store.import_database(text)

    if log:
        label = " (dry run)" if dry_run else ""
        log(
            f"[import]{label} {result.categories} categories, "
            f"{result.resources} resources, {result.tags} tags, "
            f"{result.resource_tags} resource tags"
        )
    return result

"""
Bulk Population — record-by-record loading with partial-success reporting

Saves categories, then resources, then tags, then resource-tag links, one
save_*() call each (so each one is durably persisted).  Loading stops at the
first QuotaExceededError: everything saved before it is kept, and the result
tells the caller how far it got ("created N of M before quota exceeded").
Other per-record errors are counted and skipped.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from reslib.errors import QuotaExceededError, ResLibError
from reslib.store import DocumentStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


@dataclass
class PopulateResult:
    """Counts from a bulk population run."""

    total: int = 0
    created: int = 0
    errors: int = 0
    quota_exceeded: bool = False
    messages: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.quota_exceeded and self.created == self.total

    def summary(self) -> str:
        if self.quota_exceeded:
            return (
                f"Created {self.created} of {self.total} record(s) "
                "before storage quota was exceeded"
            )
        return (
            f"Created {self.created} of {self.total} record(s), "
            f"{self.errors} error(s)"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "created": self.created,
            "errors": self.errors,
            "quota_exceeded": self.quota_exceeded,
        }


# ---------------------------------------------------------------------------
# Default log
# ---------------------------------------------------------------------------


def _default_log(msg: str) -> None:
    """Log to stderr."""
    print(msg, file=sys.stderr)


# ---------------------------------------------------------------------------
# Populate
# ---------------------------------------------------------------------------


async def populate(
    store: DocumentStore,
    *,
    categories: Iterable[Any] = (),
    resources: Iterable[Any] = (),
    tags: Iterable[Any] = (),
    resource_tags: Iterable[Any] = (),
    log: Optional[Callable[[str], None]] = _default_log,
) -> PopulateResult:
    """Save records one by one, stopping at the first quota error.

    Args:
        store: A loaded DocumentStore.
        categories, resources, tags, resource_tags: Entities or dicts.
        log: Callable for progress messages (default: stderr, None = silent).

    Returns:
        PopulateResult with counts.
    """
    batches = [
        ("category", list(categories), store.save_category),
        ("resource", list(resources), store.save_resource),
        ("tag", list(tags), store.save_tag),
        ("resource tag", list(resource_tags), store.save_resource_tag),
    ]
    result = PopulateResult(total=sum(len(records) for _, records, _ in batches))

    for label, records, save in batches:
        for record in records:
            try:
                await save(record)
            except QuotaExceededError as exc:
                result.quota_exceeded = True
                result.messages.append(f"{label}: {exc}")
                logger.warning(result.summary())
                if log:
                    log(f"[populate] {result.summary()}")
                return result
            except (ResLibError, TypeError) as exc:
                result.errors += 1
                result.messages.append(f"{label}: {exc}")
                logger.warning(f"Skipped {label}: {exc}")
                continue
            result.created += 1

    if log:
        log(f"[populate] {result.summary()}")
    return result

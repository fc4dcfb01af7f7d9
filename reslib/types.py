"""
Catalog Data Model

Categories, resources, tags and their links, plus the database envelope that
bundles all four collections with metadata.  The envelope, not the individual
entity, is the unit of persistence: it is serialized, compressed, encrypted
and written as one blob.

References between entities (category_id, subcategory_id, tag links) are soft:
nothing here validates them.  Consistency relies on the cascade rules applied
by the document store on delete.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from reslib.errors import EnvelopeFormatError

DATABASE_VERSION = "1.0.0"
ENCRYPTION_VERSION = "2.0"

# Wire names of the envelope collections (camelCase kept for existing exports)
COLLECTION_KEYS = ("categories", "resources", "tags", "resourceTags")


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    """Universally-unique identifier for a new entity."""
    return str(uuid.uuid4())


def _known_fields(cls, d: Dict[str, Any]) -> Dict[str, Any]:
    known = set(cls.__dataclass_fields__.keys())
    return {k: v for k, v in d.items() if k in known}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Category:
    """A category; parent_id set means it is a subcategory (one level)."""

    id: str = field(default_factory=generate_id)
    slug: str = ""
    title: str = ""
    description: Optional[str] = None
    parent_id: Optional[str] = None
    sort_order: int = 0
    # Denormalized, maintained by the caller
    item_count: int = 0
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    @property
    def is_subcategory(self) -> bool:
        return self.parent_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Category:
        return cls(**_known_fields(cls, d))


@dataclass
class Resource:
    """A catalogued resource (link, image, document...)."""

    id: str = field(default_factory=generate_id)
    slug: str = ""
    title: str = ""
    description: Optional[str] = None
    url: Optional[str] = None
    category_id: str = ""
    subcategory_id: Optional[str] = None
    resource_type: str = "link"
    thumbnail_url: Optional[str] = None
    thumbnail_type: Optional[str] = None
    colors: Optional[List[str]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    view_count: int = 0
    date_added: str = field(default_factory=_now_iso)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Resource:
        data = _known_fields(cls, d)
        if data.get("metadata") is None:
            data["metadata"] = {}
        return cls(**data)


@dataclass
class Tag:
    """A tag. Name/slug uniqueness is the caller's responsibility."""

    id: str = field(default_factory=generate_id)
    name: str = ""
    slug: str = ""
    usage_count: int = 0
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Tag:
        return cls(**_known_fields(cls, d))


@dataclass
class ResourceTag:
    """Join row between a resource and a tag, keyed by the pair."""

    resource_id: str
    tag_id: str
    created_at: str = field(default_factory=_now_iso)

    @property
    def key(self) -> tuple:
        return (self.resource_id, self.tag_id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> ResourceTag:
        return cls(**_known_fields(cls, d))


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


@dataclass
class DatabaseMetadata:
    """Envelope metadata. total_items mirrors len(resources) after a write."""

    version: str = DATABASE_VERSION
    created_at: str = field(default_factory=_now_iso)
    last_updated: str = field(default_factory=_now_iso)
    total_items: int = 0
    encryption_version: str = ENCRYPTION_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> DatabaseMetadata:
        return cls(**_known_fields(cls, d))


@dataclass
class BinFileInfo:
    """Sidecar record stored next to each blob."""

    filename: str
    size: int
    checksum: str
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> BinFileInfo:
        return cls(**_known_fields(cls, d))


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


@dataclass
class Database:
    """The database envelope: four collections plus metadata."""

    categories: List[Category] = field(default_factory=list)
    resources: List[Resource] = field(default_factory=list)
    tags: List[Tag] = field(default_factory=list)
    resource_tags: List[ResourceTag] = field(default_factory=list)
    metadata: DatabaseMetadata = field(default_factory=DatabaseMetadata)

    @classmethod
    def empty(cls) -> Database:
        return cls()

    def touch(self) -> None:
        """Refresh last_updated and total_items before a write."""
        self.metadata.last_updated = _now_iso()
        self.metadata.total_items = len(self.resources)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the wire names (resourceTags)."""
        return {
            "categories": [c.to_dict() for c in self.categories],
            "resources": [r.to_dict() for r in self.resources],
            "tags": [t.to_dict() for t in self.tags],
            "resourceTags": [rt.to_dict() for rt in self.resource_tags],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Any) -> Database:
        """Deserialize an envelope.

        Missing collections default to empty; a collection that is present
        but not a list, or a row that is not an object, is rejected.

        Raises:
            EnvelopeFormatError: If *d* does not describe an envelope.
        """
        if not isinstance(d, dict):
            raise EnvelopeFormatError(
                f"Envelope must be a JSON object, got {type(d).__name__}"
            )
        for key in COLLECTION_KEYS:
            value = d.get(key, [])
            if not isinstance(value, list):
                raise EnvelopeFormatError(f"Envelope field {key!r} must be a list")
            if not all(isinstance(row, dict) for row in value):
                raise EnvelopeFormatError(f"Envelope field {key!r} must hold objects")
        meta = d.get("metadata")
        if meta is None:
            meta = {}
        if not isinstance(meta, dict):
            raise EnvelopeFormatError("Envelope field 'metadata' must be an object")
        try:
            db = cls(
                categories=[Category.from_dict(x) for x in d.get("categories", [])],
                resources=[Resource.from_dict(x) for x in d.get("resources", [])],
                tags=[Tag.from_dict(x) for x in d.get("tags", [])],
                resource_tags=[
                    ResourceTag.from_dict(x) for x in d.get("resourceTags", [])
                ],
                metadata=DatabaseMetadata.from_dict(meta),
            )
        except TypeError as exc:
            raise EnvelopeFormatError(f"Invalid envelope row: {exc}") from exc
        _reject_duplicates("categories", [c.id for c in db.categories])
        _reject_duplicates("resources", [r.id for r in db.resources])
        _reject_duplicates("tags", [t.id for t in db.tags])
        _reject_duplicates("resourceTags", [rt.key for rt in db.resource_tags])
        return db


def _reject_duplicates(field_name: str, keys: List[Any]) -> None:
    seen = set()
    for key in keys:
        try:
            duplicate = key in seen
        except TypeError:
            raise EnvelopeFormatError(
                f"Envelope field {field_name!r} has an invalid key {key!r}"
            ) from None
        if duplicate:
            raise EnvelopeFormatError(
                f"Envelope field {field_name!r} has duplicate key {key!r}"
            )
        seen.add(key)

"""
reslib — local encrypted document store for a personal resource library.

The whole catalog (categories, resources, tags and their links) lives in one
envelope that is compressed, encrypted with AES-GCM and written as a new
snapshot on every change, to a filesystem or a quota-limited key-value
backend.
"""

__version__ = "0.3.0"

from reslib.types import (
    BinFileInfo,
    Category,
    Database,
    DatabaseMetadata,
    Resource,
    ResourceTag,
    Tag,
)
from reslib.errors import (
    CorruptionDetectedError,
    CryptoError,
    EnvelopeFormatError,
    NotFoundError,
    QuotaExceededError,
    ResLibError,
    StorageError,
    StoreNotLoadedError,
)
from reslib.config import ResLibConfig, load_config
from reslib.store import DocumentStore

__all__ = [
    "__version__",
    "BinFileInfo",
    "Category",
    "Database",
    "DatabaseMetadata",
    "Resource",
    "ResourceTag",
    "Tag",
    "CorruptionDetectedError",
    "CryptoError",
    "EnvelopeFormatError",
    "NotFoundError",
    "QuotaExceededError",
    "ResLibError",
    "StorageError",
    "StoreNotLoadedError",
    "ResLibConfig",
    "load_config",
    "DocumentStore",
]

"""
Error Taxonomy

Every failure the store can surface derives from ResLibError so callers can
catch the whole family, or branch on a specific kind:

    StorageError              generic I/O, permission or serialization failure
      NotFoundError           blob absent
      QuotaExceededError      medium-specific capacity signal
      CorruptionDetectedError checksum mismatch on load
    CryptoError               decryption/authentication failure
    StoreNotLoadedError       CRUD call before load_database()
    EnvelopeFormatError       imported JSON is not a database envelope
"""

from __future__ import annotations


class ResLibError(Exception):
    """Root of all reslib errors."""

    pass


class StorageError(ResLibError):
    """A storage operation failed. The message carries the cause."""

    pass


class NotFoundError(StorageError):
    """Requested blob does not exist."""

    pass


class QuotaExceededError(StorageError):
    """The medium refused a write because its capacity is exhausted."""

    pass


class CorruptionDetectedError(StorageError):
    """Stored checksum does not match the bytes that were read back."""

    pass


class CryptoError(ResLibError):
    """Ciphertext could not be authenticated or decrypted."""

    pass


class StoreNotLoadedError(ResLibError):
    """The document store has not been loaded yet."""

    pass


class EnvelopeFormatError(ResLibError, ValueError):
    """JSON payload does not describe a database envelope."""

    pass

"""
Envelope Codec — serialize, compress, checksum

The pure, synchronous steps of the persistence pipeline.  Encryption lives
in reslib.crypto; the document store chains them:

    encode_envelope -> compress -> crypto.encrypt -> checksum
"""

from __future__ import annotations

import gzip
import json
import zlib
from typing import Any, Dict

from reslib.errors import EnvelopeFormatError, StorageError

GZIP_MAGIC = b"\x1f\x8b"


def encode_envelope(data: Dict[str, Any]) -> bytes:
    """Canonical UTF-8 JSON encoding of an envelope dict."""
    try:
        text = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise StorageError(f"Envelope serialization failed: {exc}") from exc
    return text.encode("utf-8")


def decode_envelope(raw: bytes) -> Dict[str, Any]:
    """Parse an encoded envelope back into a dict."""
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise EnvelopeFormatError(f"Envelope is not valid JSON: {exc}") from exc


def compress(raw: bytes, enabled: bool = True) -> bytes:
    """gzip *raw*, or return it verbatim when compression is disabled."""
    if not enabled:
        return raw
    return gzip.compress(raw)


def decompress(payload: bytes) -> bytes:
    """Inverse of compress(), whichever setting produced *payload*."""
    if payload[:2] != GZIP_MAGIC:
        return payload
    try:
        return gzip.decompress(payload)
    except (OSError, EOFError, zlib.error) as exc:
        raise StorageError(f"Decompression failed: {exc}") from exc


def checksum(data: bytes) -> str:
    """CRC-32 of *data* as 8 lowercase hex digits.

    Corruption detection only; not a security property.
    """
    return f"{zlib.crc32(data) & 0xFFFFFFFF:08x}"

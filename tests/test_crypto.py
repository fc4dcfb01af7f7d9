"""
Tests for reslib.crypto and reslib.codec — AEAD, compression, checksum.
"""

import json

import pytest

from reslib import codec, crypto
from reslib.errors import CryptoError, EnvelopeFormatError, StorageError

ITER = 1000
KEY = "11111111-2222-3333-4444-555555555555-66666666-7777-8888-9999-000000000000"


class TestEncryptDecrypt:
    def test_round_trip(self):
        blob = crypto.encrypt(b"hello catalog", KEY, ITER)
        assert crypto.decrypt(blob, KEY, ITER) == b"hello catalog"

    def test_layout(self):
        blob = crypto.encrypt(b"abc", KEY, ITER)
        assert len(blob) == crypto.SALT_LENGTH + crypto.NONCE_LENGTH + 3 + crypto.TAG_LENGTH

    def test_fresh_salt_and_nonce_per_call(self):
        a = crypto.encrypt(b"same", KEY, ITER)
        b = crypto.encrypt(b"same", KEY, ITER)
        assert a != b
        header = crypto.SALT_LENGTH + crypto.NONCE_LENGTH
        assert a[:header] != b[:header]

    def test_wrong_key(self):
        blob = crypto.encrypt(b"secret", KEY, ITER)
        with pytest.raises(CryptoError):
            crypto.decrypt(blob, "another-key", ITER)

    def test_wrong_iterations(self):
        blob = crypto.encrypt(b"secret", KEY, ITER)
        with pytest.raises(CryptoError):
            crypto.decrypt(blob, KEY, ITER + 1)

    @pytest.mark.parametrize("pos", [0, 20, 30, -1])
    def test_tampered_byte(self, pos):
        blob = bytearray(crypto.encrypt(b"x" * 64, KEY, ITER))
        blob[pos] ^= 0x01
        with pytest.raises(CryptoError):
            crypto.decrypt(bytes(blob), KEY, ITER)

    def test_truncated(self):
        with pytest.raises(CryptoError, match="too short"):
            crypto.decrypt(b"\x00" * 10, KEY, ITER)

    def test_empty_key_refused(self):
        with pytest.raises(CryptoError):
            crypto.encrypt(b"data", "", ITER)

    def test_derive_key_length(self):
        assert len(crypto.derive_key(KEY, b"\x00" * 16, ITER)) == 32


class TestCodec:
    ENVELOPE = {
        "categories": [{"id": "c1", "title": "Couleurs été"}],
        "resources": [],
        "tags": [],
        "resourceTags": [],
        "metadata": {"version": "1.0.0"},
    }

    def test_encode_is_compact_utf8(self):
        raw = codec.encode_envelope(self.ENVELOPE)
        assert b": " not in raw
        assert "été".encode("utf-8") in raw

    def test_encode_unserializable(self):
        with pytest.raises(StorageError):
            codec.encode_envelope({"bad": object()})

    def test_decode_invalid(self):
        with pytest.raises(EnvelopeFormatError):
            codec.decode_envelope(b"\xff\xfe not json")

    @pytest.mark.parametrize("enabled", [True, False])
    def test_compress_round_trip(self, enabled):
        raw = codec.encode_envelope(self.ENVELOPE)
        packed = codec.compress(raw, enabled)
        assert packed.startswith(codec.GZIP_MAGIC) is enabled
        assert codec.decompress(packed) == raw

    def test_disabled_is_verbatim(self):
        raw = codec.encode_envelope(self.ENVELOPE)
        assert codec.compress(raw, enabled=False) is raw

    def test_corrupt_gzip(self):
        with pytest.raises(StorageError):
            codec.decompress(codec.GZIP_MAGIC + b"\x08garbage")

    @pytest.mark.parametrize("enabled", [True, False])
    def test_full_pipeline_round_trip(self, enabled):
        raw = codec.encode_envelope(self.ENVELOPE)
        blob = crypto.encrypt(codec.compress(raw, enabled), KEY, ITER)
        restored = codec.decode_envelope(codec.decompress(crypto.decrypt(blob, KEY, ITER)))
        assert restored == self.ENVELOPE
        assert json.dumps(restored, sort_keys=True) == json.dumps(self.ENVELOPE, sort_keys=True)


class TestChecksum:
    def test_format(self):
        value = codec.checksum(b"abc")
        assert len(value) == 8
        assert int(value, 16) >= 0

    def test_deterministic(self):
        assert codec.checksum(b"abc") == codec.checksum(b"abc")

    def test_single_byte_flip_detected(self):
        data = bytearray(crypto.encrypt(b"y" * 500, KEY, ITER))
        original = codec.checksum(bytes(data))
        for pos in range(0, len(data), 7):
            flipped = bytearray(data)
            flipped[pos] ^= 0xFF
            assert codec.checksum(bytes(flipped)) != original

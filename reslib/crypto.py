"""
Authenticated Encryption

AES-256-GCM with a key derived from a password (the installation key) by
PBKDF2-HMAC-SHA256.  Each call draws a fresh salt and nonce, and the output
is self-describing:

    salt (16) || nonce (12) || ciphertext || tag (16)

so decryption needs only the password.
"""

from __future__ import annotations

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from Crypto.Random import get_random_bytes

from reslib.errors import CryptoError

KEY_LENGTH = 32  # bytes (AES-256)
SALT_LENGTH = 16
NONCE_LENGTH = 12
TAG_LENGTH = 16
DEFAULT_ITERATIONS = 100_000

_HEADER_LENGTH = SALT_LENGTH + NONCE_LENGTH


def derive_key(password: str, salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytes:
    """Derive a 256-bit AES key from *password* and *salt*."""
    return PBKDF2(
        password.encode("utf-8"), salt,
        dkLen=KEY_LENGTH, count=iterations, hmac_hash_module=SHA256,
    )


def encrypt(data: bytes, password: str, iterations: int = DEFAULT_ITERATIONS) -> bytes:
    """Encrypt and authenticate *data*. Never reuses a salt/nonce pair."""
    if not password:
        raise CryptoError("Encryption key is empty")
    salt = get_random_bytes(SALT_LENGTH)
    nonce = get_random_bytes(NONCE_LENGTH)
    key = derive_key(password, salt, iterations)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_LENGTH)
    ciphertext, tag = cipher.encrypt_and_digest(data)
    return salt + nonce + ciphertext + tag


def decrypt(blob: bytes, password: str, iterations: int = DEFAULT_ITERATIONS) -> bytes:
    """Verify and decrypt a blob produced by encrypt().

    Raises:
        CryptoError: Wrong key, tampered bytes, or truncated input.
    """
    if len(blob) < _HEADER_LENGTH + TAG_LENGTH:
        raise CryptoError(f"Ciphertext too short ({len(blob)} bytes)")
    salt = blob[:SALT_LENGTH]
    nonce = blob[SALT_LENGTH:_HEADER_LENGTH]
    ciphertext = blob[_HEADER_LENGTH:-TAG_LENGTH]
    tag = blob[-TAG_LENGTH:]
    key = derive_key(password, salt, iterations)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_LENGTH)
    try:
        return cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError as exc:
        # pycryptodome reports "MAC check failed"
        raise CryptoError(f"Decryption failed: {exc}") from exc

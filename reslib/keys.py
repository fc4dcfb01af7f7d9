"""
Installation Key Management

One symmetric key per local installation, resolved in this order:

    1. configured key (crypto.encryption_key)
    2. key cached for this process
    3. secure credential store (keyring), when enabled and available
    4. local plaintext settings file (<data_dir>/settings.json)

If none exists, a key is generated (two concatenated UUID4 tokens) and
persisted to the secure store when possible, else to the settings file.
The settings file is NOT encrypted: anyone who can read the data directory
can decrypt the catalog.  Enable keys.use_keyring to avoid that.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable

from reslib.config import ResLibConfig
from reslib.errors import StorageError
from reslib.storage.filesystem import atomic_write_bytes

logger = logging.getLogger(__name__)

KEY_NAME = "encrypted_db_key"


def generate_installation_key() -> str:
    """Two random UUID4 tokens joined by a dash (~244 bits of entropy)."""
    return f"{uuid.uuid4()}-{uuid.uuid4()}"


# ---------------------------------------------------------------------------
# Local plaintext settings
# ---------------------------------------------------------------------------


class LocalSettings:
    """Persistent string map stored as a JSON file (owner read/write only)."""

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def _read(self) -> Dict[str, str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Unreadable settings file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Settings file {self.path} is not a JSON object")
        return data

    def get(self, name: str) -> Optional[str]:
        value = self._read().get(name)
        return value if isinstance(value, str) else None

    def set(self, name: str, value: str) -> None:
        data = self._read()
        data[name] = value
        payload = json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_bytes(self.path, payload.encode("utf-8"))
            os.chmod(self.path, 0o600)
        except OSError as exc:
            raise StorageError(f"Cannot write settings file {self.path}: {exc}") from exc

    def remove(self, name: str) -> None:
        data = self._read()
        if data.pop(name, None) is not None:
            payload = json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True)
            atomic_write_bytes(self.path, payload.encode("utf-8"))


# ---------------------------------------------------------------------------
# Secure credential store
# ---------------------------------------------------------------------------


@runtime_checkable
class SecretStore(Protocol):
    """A host credential store. Structural typing, no inheritance needed."""

    def get_secret(self, name: str) -> Optional[str]:
        ...

    def set_secret(self, name: str, value: str) -> None:
        ...


class KeyringSecretStore:
    """SecretStore on top of the ``keyring`` package (OS credential vault)."""

    def __init__(self, service: str = "reslib"):
        import keyring  # optional dependency: pip install reslib[keyring]

        self._keyring = keyring
        self.service = service

    def get_secret(self, name: str) -> Optional[str]:
        return self._keyring.get_password(self.service, name)

    def set_secret(self, name: str, value: str) -> None:
        self._keyring.set_password(self.service, name, value)


def open_secret_store(service: str) -> Optional[SecretStore]:
    """Return a keyring-backed store, or None if keyring is not usable."""
    try:
        store = KeyringSecretStore(service)
    except ImportError:
        logger.warning(
            "keys.use_keyring is set but keyring is not installed. "
            "Run: pip install reslib[keyring]"
        )
        return None
    return store


# ---------------------------------------------------------------------------
# KeyManager
# ---------------------------------------------------------------------------


class KeyManager:
    """Resolves and caches the installation-wide encryption key."""

    def __init__(
        self,
        config: Optional[ResLibConfig] = None,
        *,
        settings: Optional[LocalSettings] = None,
        secret_store: Optional[SecretStore] = None,
    ):
        self._config = config or ResLibConfig()
        self._configured = self._config.crypto.encryption_key or None
        self._cached: Optional[str] = None
        self._settings = settings or LocalSettings(
            self._config.store.data_path / self._config.keys.settings_file
        )
        if secret_store is None and self._config.keys.use_keyring:
            secret_store = open_secret_store(self._config.keys.keyring_service)
        self._secret_store = secret_store

    @property
    def source(self) -> str:
        """Where keys are persisted: 'config', 'keyring' or 'settings'."""
        if self._configured:
            return "config"
        return "keyring" if self._secret_store is not None else "settings"

    def get_key(self) -> str:
        """Return the installation key, generating it on first use."""
        if self._configured:
            return self._configured
        if self._cached:
            return self._cached

        key = self._read_persisted()
        if key is None:
            key = generate_installation_key()
            self._persist(key)
        self._cached = key
        return key

    def _read_persisted(self) -> Optional[str]:
        if self._secret_store is not None:
            try:
                key = self._secret_store.get_secret(KEY_NAME)
            except Exception as exc:
                logger.warning(f"Secure credential store unavailable: {exc}")
                self._secret_store = None
            else:
                if key:
                    return key
                # Migrate a key written before the secure store was enabled
                legacy = self._settings.get(KEY_NAME)
                if legacy:
                    self._store_secure(legacy)
                return legacy
        return self._settings.get(KEY_NAME)

    def _store_secure(self, key: str) -> bool:
        try:
            self._secret_store.set_secret(KEY_NAME, key)
        except Exception as exc:
            logger.warning(f"Could not write key to secure store: {exc}")
            self._secret_store = None
            return False
        return True

    def _persist(self, key: str) -> None:
        if self._secret_store is not None and self._store_secure(key):
            logger.info("Generated installation key (stored in secure credential store)")
            return
        self._settings.set(KEY_NAME, key)
        logger.info(
            f"Generated installation key, stored UNENCRYPTED in {self._settings.path}; "
            "anyone able to read this file can decrypt the catalog"
        )

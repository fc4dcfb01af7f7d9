"""
Store Configuration

Configuration dataclasses for reslib: storage backend, crypto pipeline,
snapshot retention and key management.  Includes load_config() for reading
a JSON config file with silent fallback to compiled defaults.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

DEFAULT_DATA_DIR = os.path.join("~", ".reslib")

BackendKind = Literal["auto", "filesystem", "kv"]
VALID_BACKENDS = {"auto", "filesystem", "kv"}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


@dataclass
class StoreConfig:
    """Storage backend configuration."""
    data_dir: str = DEFAULT_DATA_DIR
    backend: BackendKind = "auto"
    # Key-value variant: SQLite file and its byte quota
    kv_path: Optional[str] = None
    kv_quota_bytes: int = 5 * 1024 * 1024
    file_prefix: str = "database_"
    file_suffix: str = ".bin"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def kv_file(self) -> Path:
        if self.kv_path:
            return Path(self.kv_path).expanduser()
        return self.data_path / "kvstore.sqlite3"

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if self.backend not in VALID_BACKENDS:
            errors.append(
                f"store.backend: {self.backend!r} not in {sorted(VALID_BACKENDS)}"
            )
        _check_range(errors, "store.kv_quota_bytes",
                      self.kv_quota_bytes, 16 * 1024, 1 << 40, int)
        if not self.file_prefix:
            errors.append("store.file_prefix: must not be empty")
        if not self.file_suffix.startswith("."):
            errors.append(f"store.file_suffix: {self.file_suffix!r} must start with '.'")
        return errors


@dataclass
class CryptoConfig:
    """Serialization, compression and encryption settings."""
    # Empty = resolve through key management
    encryption_key: str = ""
    compression_enabled: bool = True
    kdf_iterations: int = 100_000
    max_file_size: int = 10 * 1024 * 1024

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "crypto.kdf_iterations",
                      self.kdf_iterations, 1000, 10_000_000, int)
        _check_range(errors, "crypto.max_file_size",
                      self.max_file_size, 1024, 1 << 32, int)
        return errors


@dataclass
class RetentionConfig:
    """Snapshot retention. keep_latest=0 keeps every blob."""
    keep_latest: int = 5

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "retention.keep_latest",
                      self.keep_latest, 0, 10000, int)
        return errors


@dataclass
class KeysConfig:
    """Installation key storage."""
    use_keyring: bool = False
    keyring_service: str = "reslib"
    settings_file: str = "settings.json"

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if not self.keyring_service:
            errors.append("keys.keyring_service: must not be empty")
        return errors


@dataclass
class ResLibConfig:
    """Top-level reslib configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    crypto: CryptoConfig = field(default_factory=CryptoConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    keys: KeysConfig = field(default_factory=KeysConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> ResLibConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "store" in d:
            kwargs["store"] = StoreConfig(**d["store"])
        if "crypto" in d:
            kwargs["crypto"] = CryptoConfig(**d["crypto"])
        if "retention" in d:
            kwargs["retention"] = RetentionConfig(**d["retention"])
        if "keys" in d:
            kwargs["keys"] = KeysConfig(**d["keys"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.store.validate())
        errors.extend(self.crypto.validate())
        errors.extend(self.retention.validate())
        errors.extend(self.keys.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> ResLibConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        ResLibConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = ResLibConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = ResLibConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = ResLibConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg

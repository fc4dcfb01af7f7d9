"""
Tests for reslib.keys — installation key resolution and persistence.
"""

import json
import re
import stat

import pytest

from conftest import MemorySecretStore, build_config
from reslib.errors import StorageError
from reslib.keys import (
    KEY_NAME,
    KeyManager,
    LocalSettings,
    SecretStore,
    generate_installation_key,
)

UUID = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"


class TestGenerateKey:
    def test_format(self):
        assert re.fullmatch(f"{UUID}-{UUID}", generate_installation_key())

    def test_unique(self):
        assert generate_installation_key() != generate_installation_key()


class TestLocalSettings:
    def test_set_get(self, tmp_path):
        s = LocalSettings(tmp_path / "sub" / "settings.json")
        assert s.get("k") is None
        s.set("k", "v")
        assert s.get("k") == "v"
        assert json.loads(s.path.read_text()) == {"k": "v"}

    def test_owner_only_permissions(self, tmp_path):
        s = LocalSettings(tmp_path / "settings.json")
        s.set("k", "v")
        assert stat.S_IMODE(s.path.stat().st_mode) == 0o600

    def test_remove(self, tmp_path):
        s = LocalSettings(tmp_path / "settings.json")
        s.set("a", "1")
        s.set("b", "2")
        s.remove("a")
        assert s.get("a") is None
        assert s.get("b") == "2"

    def test_unreadable(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]")
        with pytest.raises(StorageError):
            LocalSettings(path).get("k")

    def test_non_string_value_ignored(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({KEY_NAME: 42}))
        assert LocalSettings(path).get(KEY_NAME) is None


class TestKeyManager:
    def test_generated_once_and_cached(self, tmp_path):
        km = KeyManager(build_config(tmp_path))
        k1 = km.get_key()
        k2 = km.get_key()
        assert k1 == k2
        assert km.source == "settings"

    def test_persisted_and_reused(self, tmp_path):
        cfg = build_config(tmp_path)
        k1 = KeyManager(cfg).get_key()
        settings = cfg.store.data_path / cfg.keys.settings_file
        assert json.loads(settings.read_text())[KEY_NAME] == k1
        assert KeyManager(cfg).get_key() == k1

    def test_configured_key_wins(self, tmp_path):
        cfg = build_config(tmp_path, crypto__encryption_key="from-config")
        km = KeyManager(cfg)
        assert km.get_key() == "from-config"
        assert km.source == "config"
        assert not (cfg.store.data_path / cfg.keys.settings_file).exists()

    def test_plaintext_warning_logged(self, tmp_path, caplog):
        with caplog.at_level("INFO", logger="reslib.keys"):
            KeyManager(build_config(tmp_path)).get_key()
        assert "UNENCRYPTED" in caplog.text

    def test_secret_store_used(self, tmp_path):
        cfg = build_config(tmp_path)
        vault = MemorySecretStore()
        km = KeyManager(cfg, secret_store=vault)
        key = km.get_key()
        assert vault.secrets[KEY_NAME] == key
        assert km.source == "keyring"
        assert not (cfg.store.data_path / cfg.keys.settings_file).exists()

    def test_memory_store_satisfies_protocol(self):
        assert isinstance(MemorySecretStore(), SecretStore)

    def test_settings_key_migrated(self, tmp_path):
        cfg = build_config(tmp_path)
        legacy = KeyManager(cfg).get_key()
        vault = MemorySecretStore()
        assert KeyManager(cfg, secret_store=vault).get_key() == legacy
        assert vault.secrets[KEY_NAME] == legacy

    def test_failing_store_falls_back(self, tmp_path, caplog):
        cfg = build_config(tmp_path)
        km = KeyManager(cfg, secret_store=MemorySecretStore(fail=True))
        with caplog.at_level("WARNING", logger="reslib.keys"):
            key = km.get_key()
        assert km.source == "settings"
        assert "unavailable" in caplog.text
        settings = LocalSettings(cfg.store.data_path / cfg.keys.settings_file)
        assert settings.get(KEY_NAME) == key

    def test_keyring_missing_falls_back(self, tmp_path, monkeypatch):
        import builtins

        real_import = builtins.__import__

        def fake_import(name, *args, **kwargs):
            if name == "keyring":
                raise ImportError("No module named 'keyring'")
            return real_import(name, *args, **kwargs)

        monkeypatch.setattr(builtins, "__import__", fake_import)
        cfg = build_config(tmp_path, keys__use_keyring=True)
        km = KeyManager(cfg)
        assert km.source == "settings"
        assert km.get_key()

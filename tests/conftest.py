"""Shared fixtures: fast-KDF configs and stores on both backends."""

import pytest

from reslib.config import ResLibConfig
from reslib.store import DocumentStore

# Low iteration count keeps the suite fast; production default is 100000.
TEST_KDF_ITERATIONS = 1000


def build_config(tmp_path, backend="filesystem", **overrides) -> ResLibConfig:
    """Config rooted in tmp_path. overrides: section__field=value."""
    cfg = ResLibConfig()
    cfg.store.data_dir = str(tmp_path / "data")
    cfg.store.kv_path = str(tmp_path / "kv" / "kvstore.sqlite3")
    cfg.store.backend = backend
    cfg.crypto.kdf_iterations = TEST_KDF_ITERATIONS
    cfg.retention.keep_latest = 0
    for dotted, value in overrides.items():
        section, name = dotted.split("__", 1)
        setattr(getattr(cfg, section), name, value)
    return cfg


class MemorySecretStore:
    """In-memory SecretStore double."""

    def __init__(self, fail: bool = False):
        self.secrets = {}
        self.fail = fail

    def get_secret(self, name):
        if self.fail:
            raise RuntimeError("vault locked")
        return self.secrets.get(name)

    def set_secret(self, name, value):
        if self.fail:
            raise RuntimeError("vault locked")
        self.secrets[name] = value


@pytest.fixture
def make_config(tmp_path):
    """Factory for test configs: make_config(backend, **overrides)."""
    def _make(backend="filesystem", **overrides):
        return build_config(tmp_path, backend, **overrides)
    return _make


@pytest.fixture(params=["filesystem", "kv"])
def backend_kind(request):
    return request.param


@pytest.fixture
def config(make_config, backend_kind):
    return make_config(backend_kind)


@pytest.fixture
def store(config):
    """An unloaded DocumentStore on the parametrized backend."""
    s = DocumentStore(config)
    yield s
    s.close()

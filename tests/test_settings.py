"""Tests for kvtable.settings and kvtable.factory."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from kvtable.drivers.memory import InMemoryBackend
from kvtable.factory import create_backend, create_table
from kvtable.settings import BackendKind, HashTableSettings, TableParams


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Isolate from the developer's environment and any .env file."""
    for name in [
        "KVTABLE_BACKEND",
        "KVTABLE_REDIS_URL",
        "KVTABLE_PREFIX",
        "KVTABLE_LOCK_TIMEOUT",
        "KVTABLE_STRICT_UNLOCK",
    ]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestTableParams:
    def test_defaults(self):
        params = TableParams()
        assert params.prefix == "hht_"
        assert params.lock_timeout == 30
        assert params.lock_retry_interval == 0.1
        assert params.lock_jitter == 0.0
        assert params.strict_unlock is False

    def test_frozen(self):
        with pytest.raises(ValidationError):
            TableParams().prefix = "x_"

    def test_json_round_trip(self):
        params = TableParams(prefix="app_", lock_timeout=5, strict_unlock=True)
        assert TableParams.model_validate_json(params.model_dump_json()) == params

    @pytest.mark.parametrize(
        "bad",
        [{"lock_timeout": 0}, {"lock_retry_interval": 0}, {"lock_jitter": -1}, {"unknown": 1}],
    )
    def test_rejects_invalid(self, bad):
        with pytest.raises(ValidationError):
            TableParams(**bad)


class TestHashTableSettings:
    def test_defaults(self):
        settings = HashTableSettings()
        assert settings.backend == BackendKind.REDIS
        assert settings.redis_url == "redis://localhost:6379/0"
        assert settings.prefix == "hht_"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("KVTABLE_BACKEND", "memory")
        monkeypatch.setenv("KVTABLE_PREFIX", "app_")
        monkeypatch.setenv("KVTABLE_LOCK_TIMEOUT", "12")
        monkeypatch.setenv("KVTABLE_STRICT_UNLOCK", "true")

        settings = HashTableSettings()
        assert settings.backend == BackendKind.MEMORY
        assert settings.table_params() == TableParams(
            prefix="app_", lock_timeout=12, strict_unlock=True
        )

    def test_reads_dotenv(self, tmp_path):
        (tmp_path / ".env").write_text("KVTABLE_PREFIX=dotenv_\n")
        assert HashTableSettings().prefix == "dotenv_"

    def test_init_overrides_environment(self, monkeypatch):
        monkeypatch.setenv("KVTABLE_PREFIX", "env_")
        assert HashTableSettings(prefix="arg_").prefix == "arg_"


class TestFactory:
    def test_memory_backend(self):
        backend = create_backend(HashTableSettings(backend=BackendKind.MEMORY))
        assert isinstance(backend, InMemoryBackend)

    @patch("kvtable.drivers.redis.RedisBackend.from_url")
    def test_redis_backend(self, mock_from_url):
        settings = HashTableSettings(backend=BackendKind.REDIS, redis_url="redis://cache:6379/2")
        assert create_backend(settings) is mock_from_url.return_value
        mock_from_url.assert_called_once_with("redis://cache:6379/2")

    def test_create_table_from_settings(self):
        settings = HashTableSettings(backend=BackendKind.MEMORY, prefix="app_", lock_timeout=7)
        table = create_table(settings)
        assert table.prefix == "app_"
        assert table.to_params().lock_timeout == 7
        assert isinstance(table.backend, InMemoryBackend)

    def test_create_table_with_given_backend(self, backend):
        logger = MagicMock()
        table = create_table(HashTableSettings(prefix="x_"), backend=backend, logger=logger)
        assert table.backend is backend
        table.set("k", "v")
        assert backend.batch_get(["x_k"]) == {"x_k": "v"}
        logger.debug.assert_called()

    def test_create_table_reads_environment(self, monkeypatch):
        monkeypatch.setenv("KVTABLE_BACKEND", "memory")
        monkeypatch.setenv("KVTABLE_PREFIX", "env_")
        assert create_table().prefix == "env_"

"""Tests for engine settings and environment parsing."""

import pytest

from orchestrator.config import EngineSettings, get_env_float, get_env_int
from orchestrator.errors import ConfigurationError


class TestDefaults:
    """Default tunables."""

    def test_defaults(self):
        settings = EngineSettings()

        assert settings.cache_ttl_seconds == 300
        assert settings.eviction_threshold_chars == 15000
        assert settings.eviction_preview_chars == 1000
        assert settings.loop_window == 2
        assert settings.model_max_attempts == 3
        assert settings.checkpoint_backend == "memory"


class TestValidation:
    """Unusable settings fail at construction."""

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            EngineSettings(checkpoint_backend="redis")

    def test_preview_must_be_shorter_than_threshold(self):
        with pytest.raises(ConfigurationError):
            EngineSettings(eviction_threshold_chars=100, eviction_preview_chars=100)

    def test_loop_window_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            EngineSettings(loop_window=0)

    def test_history_window_minimum(self):
        with pytest.raises(ConfigurationError):
            EngineSettings(history_max_messages=1)


class TestFromEnv:
    """Environment overrides."""

    def test_reads_overrides(self, monkeypatch):
        monkeypatch.setenv("ORCHESTRATOR_CACHE_TTL_SECONDS", "60")
        monkeypatch.setenv("ORCHESTRATOR_MAX_ITERATIONS", "10")
        monkeypatch.setenv("ORCHESTRATOR_CHECKPOINT_BACKEND", "FILE")
        monkeypatch.setenv("ORCHESTRATOR_CHECKPOINT_DIR", "/tmp/ckpt")

        settings = EngineSettings.from_env()

        assert settings.cache_ttl_seconds == 60.0
        assert settings.max_iterations == 10
        assert settings.checkpoint_backend == "file"
        assert str(settings.checkpoint_path) == "/tmp/ckpt"

    def test_invalid_number_raises(self, monkeypatch):
        monkeypatch.setenv("ORCHESTRATOR_LOOP_WINDOW", "two")

        with pytest.raises(ConfigurationError):
            EngineSettings.from_env()


class TestEnvGetters:
    """Typed environment getters."""

    def test_required_missing(self, monkeypatch):
        monkeypatch.delenv("SOME_REQUIRED_VALUE", raising=False)

        with pytest.raises(ConfigurationError):
            get_env_int("SOME_REQUIRED_VALUE", required=True)

    def test_float_rejects_garbage(self, monkeypatch):
        monkeypatch.setenv("TIMEOUT", "soon")

        with pytest.raises(ConfigurationError):
            get_env_float("TIMEOUT")

    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("TIMEOUT", raising=False)

        assert get_env_float("TIMEOUT", 2.5) == 2.5

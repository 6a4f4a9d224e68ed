"""Tests for engine configuration."""

from __future__ import annotations

import os

import pytest

from tabflow.config import EngineConfig, VisionBackend, load_engine_config


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_defaults(self) -> None:
        """Test default configuration values."""
        config = EngineConfig()

        assert config.http_endpoint == "http://127.0.0.1:9222"
        assert config.protocol_version == "1.3"
        assert config.command_timeout_seconds is None
        assert config.step_settle_ms == 500
        assert config.default_wait_ms == 1000
        assert config.vision_backend == VisionBackend.SIMULATED
        assert config.vision_delay_ms == 1500

    def test_invalid_port(self) -> None:
        with pytest.raises(ValueError, match="cdp_port"):
            EngineConfig(cdp_port=0)

    def test_non_positive_timeout_rejected(self) -> None:
        with pytest.raises(ValueError, match="command_timeout_seconds"):
            EngineConfig(command_timeout_seconds=0)

    def test_negative_settle_rejected(self) -> None:
        with pytest.raises(ValueError, match="step_settle_ms"):
            EngineConfig(step_settle_ms=-1)

    def test_asset_base_url_scheme(self) -> None:
        with pytest.raises(ValueError, match="asset_base_url"):
            EngineConfig(asset_base_url="ftp://assets")

    def test_with_overrides_returns_copy(self) -> None:
        """Test that overrides do not mutate the original."""
        config = EngineConfig()
        fast = config.with_overrides(step_settle_ms=0)

        assert fast.step_settle_ms == 0
        assert config.step_settle_ms == 500

    def test_with_overrides_validates(self) -> None:
        with pytest.raises(ValueError):
            EngineConfig().with_overrides(event_queue_size=0)


class TestLoadEngineConfig:
    """Tests for environment loading."""

    def test_env_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TABFLOW_CDP_PORT", "9333")
        monkeypatch.setenv("TABFLOW_COMMAND_TIMEOUT", "2.5")
        monkeypatch.setenv("TABFLOW_VISION_BACKEND", "LLM")
        monkeypatch.setenv("TABFLOW_ASSET_BASE_URL", "https://assets.example.com")

        config = load_engine_config()

        assert config.cdp_port == 9333
        assert config.command_timeout_seconds == 2.5
        assert config.vision_backend == VisionBackend.LLM
        assert config.asset_base_url == "https://assets.example.com"

    def test_invalid_values_fall_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that unparseable values keep the defaults."""
        monkeypatch.setenv("TABFLOW_CDP_PORT", "not-a-port")
        monkeypatch.setenv("TABFLOW_VISION_BACKEND", "telepathy")

        config = load_engine_config()

        assert config.cdp_port == 9222
        assert config.vision_backend == VisionBackend.SIMULATED

    def test_strategy_paths_split(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TABFLOW_STRATEGY_PATHS", os.pathsep.join(["a.yaml", "", "b.yaml"]))

        config = load_engine_config()

        assert config.strategy_paths == ["a.yaml", "b.yaml"]

    def test_custom_prefix_and_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ALT_DEFAULT_WAIT_MS", "250")

        config = load_engine_config(
            env_prefix="ALT_",
            defaults=EngineConfig(step_settle_ms=0),
        )

        assert config.default_wait_ms == 250
        assert config.step_settle_ms == 0

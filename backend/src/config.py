"""
Engine configuration.

Provides typed configuration for:
- DevTools endpoint discovery and protocol version
- Per-command timeouts (unlimited by default)
- Interpreter pacing (settle delay between steps, default WAIT)
- Vision fallback backend selection
- Placeholder URL resolution and event channel sizing
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Self

import structlog

logger = structlog.get_logger(__name__)


class VisionBackend(StrEnum):
    """Backend used by the vision fallback locator."""

    SIMULATED = "simulated"
    """Fixed-delay simulated locator returning canned coordinates."""

    LLM = "llm"
    """Multimodal model behind an OpenAI-compatible endpoint."""


@dataclass(slots=True)
class EngineConfig:
    """
    Configuration for the automation engine.

    Supports loading from environment variables with sensible defaults.
    """

    cdp_host: str = "127.0.0.1"
    """Host of the browser's remote debugging HTTP endpoint."""

    cdp_port: int = 9222
    """Port of the browser's remote debugging HTTP endpoint."""

    cdp_ws_url: str | None = None
    """Explicit browser websocket URL; skips /json/version discovery when set."""

    protocol_version: str = "1.3"
    """DevTools protocol version the engine was written against."""

    command_timeout_seconds: float | None = None
    """Timeout for a single protocol command. None waits indefinitely."""

    step_settle_ms: int = 500
    """Delay inserted after every strategy step."""

    default_wait_ms: int = 1000
    """Duration of a WAIT step without an explicit timeout."""

    vision_backend: VisionBackend = VisionBackend.SIMULATED
    """Which vision locator to construct."""

    vision_delay_ms: int = 1500
    """Simulated analysis latency of the simulated vision locator."""

    asset_base_url: str = "http://127.0.0.1:8000"
    """Base URL substituted for extension-relative placeholder URLs."""

    event_queue_size: int = 256
    """Capacity of each progress-feed subscription queue."""

    strategy_paths: list[str] = field(default_factory=list)
    """Extra YAML/JSON strategy files merged over the built-in catalog."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values."""
        if not 0 < self.cdp_port < 65536:
            raise ValueError("cdp_port must be between 1 and 65535")
        if self.command_timeout_seconds is not None and self.command_timeout_seconds <= 0:
            raise ValueError("command_timeout_seconds must be positive when set")
        if self.step_settle_ms < 0:
            raise ValueError("step_settle_ms must be non-negative")
        if self.default_wait_ms < 0:
            raise ValueError("default_wait_ms must be non-negative")
        if self.vision_delay_ms < 0:
            raise ValueError("vision_delay_ms must be non-negative")
        if self.event_queue_size < 1:
            raise ValueError("event_queue_size must be at least 1")
        if not self.asset_base_url.startswith(("http://", "https://", "file://")):
            raise ValueError("asset_base_url must be an http(s) or file URL")

    @property
    def http_endpoint(self) -> str:
        """Base URL of the remote debugging HTTP endpoint."""
        return f"http://{self.cdp_host}:{self.cdp_port}"

    def with_overrides(self, **overrides: Any) -> Self:
        """
        Create a new config with specified overrides.

        Returns a new instance - does not mutate the original.
        """
        return replace(self, **overrides)


def load_engine_config(
    env_prefix: str = "TABFLOW_",
    defaults: EngineConfig | None = None,
) -> EngineConfig:
    """
    Load engine configuration from environment variables.

    Environment variables (all optional):
    - TABFLOW_CDP_HOST: Remote debugging host
    - TABFLOW_CDP_PORT: Remote debugging port
    - TABFLOW_CDP_WS_URL: Browser websocket URL (skips discovery)
    - TABFLOW_PROTOCOL_VERSION: Expected DevTools protocol version
    - TABFLOW_COMMAND_TIMEOUT: Per-command timeout in seconds (unset = unlimited)
    - TABFLOW_STEP_SETTLE_MS: Delay between strategy steps
    - TABFLOW_DEFAULT_WAIT_MS: Default WAIT duration
    - TABFLOW_VISION_BACKEND: simulated/llm
    - TABFLOW_VISION_DELAY_MS: Simulated vision latency
    - TABFLOW_ASSET_BASE_URL: Replacement for placeholder URLs
    - TABFLOW_EVENT_QUEUE_SIZE: Progress subscription queue capacity
    - TABFLOW_STRATEGY_PATHS: Extra strategy files (os.pathsep separated)

    Args:
        env_prefix: Prefix for environment variables
        defaults: Default configuration to use as base

    Returns:
        Loaded and validated EngineConfig
    """
    base = defaults or EngineConfig()

    def get_str(key: str, default: str | None) -> str | None:
        value = os.environ.get(f"{env_prefix}{key}")
        if value is None or not value.strip():
            return default
        return value.strip()

    def get_int(key: str, default: int) -> int:
        value = os.environ.get(f"{env_prefix}{key}")
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning(
                "Invalid integer value for config",
                key=key,
                value=value,
                using_default=default,
            )
            return default

    def get_optional_float(key: str, default: float | None) -> float | None:
        value = os.environ.get(f"{env_prefix}{key}")
        if value is None or not value.strip():
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning(
                "Invalid float value for config",
                key=key,
                value=value,
                using_default=default,
            )
            return default

    def get_backend(key: str, default: VisionBackend) -> VisionBackend:
        value = os.environ.get(f"{env_prefix}{key}")
        if value is None:
            return default
        try:
            return VisionBackend(value.lower())
        except ValueError:
            logger.warning(
                "Invalid vision backend",
                key=key,
                value=value,
                using_default=default,
            )
            return default

    paths_value = os.environ.get(f"{env_prefix}STRATEGY_PATHS")
    strategy_paths = (
        [p for p in paths_value.split(os.pathsep) if p]
        if paths_value
        else list(base.strategy_paths)
    )

    return EngineConfig(
        cdp_host=get_str("CDP_HOST", base.cdp_host) or base.cdp_host,
        cdp_port=get_int("CDP_PORT", base.cdp_port),
        cdp_ws_url=get_str("CDP_WS_URL", base.cdp_ws_url),
        protocol_version=get_str("PROTOCOL_VERSION", base.protocol_version) or base.protocol_version,
        command_timeout_seconds=get_optional_float("COMMAND_TIMEOUT", base.command_timeout_seconds),
        step_settle_ms=get_int("STEP_SETTLE_MS", base.step_settle_ms),
        default_wait_ms=get_int("DEFAULT_WAIT_MS", base.default_wait_ms),
        vision_backend=get_backend("VISION_BACKEND", base.vision_backend),
        vision_delay_ms=get_int("VISION_DELAY_MS", base.vision_delay_ms),
        asset_base_url=get_str("ASSET_BASE_URL", base.asset_base_url) or base.asset_base_url,
        event_queue_size=get_int("EVENT_QUEUE_SIZE", base.event_queue_size),
        strategy_paths=strategy_paths,
    )

"""
Configuration for the multimodal model behind the vision fallback.

Pydantic-validated settings for an OpenAI-compatible chat endpoint that
accepts image input, loaded from TABFLOW_LLM_* variables and an optional
YAML file.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any, Self

import structlog
import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)


class LLMProvider(StrEnum):
    """Supported endpoint flavours."""

    OPENAI = "openai"
    AZURE = "azure"
    LOCAL = "local"  # Self-hosted OpenAI-compatible servers
    CUSTOM = "custom"


class ImageDetail(StrEnum):
    """Resolution hint passed along with the screenshot."""

    LOW = "low"
    HIGH = "high"
    AUTO = "auto"


class RetryConfig(BaseModel):
    """Retry behaviour for transient endpoint failures."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=2, ge=0, le=10)
    initial_delay_ms: int = Field(default=500, ge=100, le=30000)
    max_delay_ms: int = Field(default=8000, ge=1000, le=120000)
    exponential_base: float = Field(default=2.0, ge=1.0, le=4.0)
    jitter: bool = True


class LLMEndpointConfig(BaseModel):
    """Connection settings for a multimodal chat endpoint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for the OpenAI-compatible API endpoint",
    )
    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key for authentication",
    )
    model: str = Field(
        default="gpt-4o-mini",
        description="Vision-capable model identifier",
    )
    provider: LLMProvider = Field(default=LLMProvider.OPENAI)

    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=256, ge=1, le=32000)
    timeout_ms: int = Field(default=30000, ge=1000, le=300000)
    concurrent_requests: int = Field(default=4, ge=1, le=64)

    azure_deployment: str | None = None
    azure_api_version: str = "2024-06-01"

    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base_url is valid and strip trailing slashes."""
        v = v.rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v

    @model_validator(mode="after")
    def validate_azure_config(self) -> Self:
        if self.provider == LLMProvider.AZURE and not self.azure_deployment:
            raise ValueError("azure_deployment is required for Azure provider")
        return self

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.get_secret_value())


class VisionPromptConfig(BaseModel):
    """How the locator talks to the model."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    image_detail: ImageDetail = ImageDetail.HIGH
    system_prompt: str | None = Field(
        default=None,
        description="Replaces the built-in locator instructions when set",
    )
    json_mode: bool = Field(
        default=True,
        description="Request response_format=json_object from the endpoint",
    )


class LLMConfig(BaseModel):
    """Complete configuration of the model-backed vision locator."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(
        default=False,
        description="When False the engine uses the simulated locator",
    )
    endpoint: LLMEndpointConfig = Field(default_factory=LLMEndpointConfig)
    vision: VisionPromptConfig = Field(default_factory=VisionPromptConfig)


class LLMSettings(BaseSettings):
    """
    Environment-based LLM settings.

    Loads configuration from environment variables with TABFLOW_LLM_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="TABFLOW_LLM_",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = False
    base_url: str = "https://api.openai.com/v1"
    api_key: SecretStr = SecretStr("")
    model: str = "gpt-4o-mini"
    provider: LLMProvider = LLMProvider.OPENAI
    temperature: float = 0.0
    max_tokens: int = 256
    timeout_ms: int = 30000
    concurrent_requests: int = 4

    azure_deployment: str | None = None
    azure_api_version: str = "2024-06-01"

    image_detail: ImageDetail = ImageDetail.HIGH
    json_mode: bool = True

    def to_config(self, file_config: dict[str, Any] | None = None) -> LLMConfig:
        """Merge environment values with an optional file mapping (file wins)."""
        data = file_config or {}
        endpoint_data = data.get("endpoint", {})
        vision_data = data.get("vision", {})

        endpoint = LLMEndpointConfig(
            base_url=endpoint_data.get("base_url", self.base_url),
            api_key=SecretStr(endpoint_data.get("api_key", self.api_key.get_secret_value())),
            model=endpoint_data.get("model", self.model),
            provider=LLMProvider(endpoint_data.get("provider", self.provider)),
            temperature=endpoint_data.get("temperature", self.temperature),
            max_tokens=endpoint_data.get("max_tokens", self.max_tokens),
            timeout_ms=endpoint_data.get("timeout_ms", self.timeout_ms),
            concurrent_requests=endpoint_data.get(
                "concurrent_requests", self.concurrent_requests
            ),
            azure_deployment=endpoint_data.get("azure_deployment", self.azure_deployment),
            azure_api_version=endpoint_data.get("azure_api_version", self.azure_api_version),
            retry=RetryConfig(**endpoint_data.get("retry", {})),
        )

        vision = VisionPromptConfig(
            image_detail=ImageDetail(vision_data.get("image_detail", self.image_detail)),
            system_prompt=vision_data.get("system_prompt"),
            json_mode=vision_data.get("json_mode", self.json_mode),
        )

        return LLMConfig(
            enabled=data.get("enabled", self.enabled),
            endpoint=endpoint,
            vision=vision,
        )


STANDARD_CONFIG_PATHS = (
    Path(".tabflow/llm.yaml"),
    Path(".tabflow/llm.yml"),
    Path("tabflow-llm.yaml"),
)


def load_llm_config(config_file: Path | str | None = None) -> LLMConfig:
    """
    Load LLM configuration from environment and an optional YAML file.

    Values in the file override environment variables, which override
    defaults. Without an explicit file the standard locations are searched.

    Args:
        config_file: Optional path to YAML config file

    Returns:
        Complete LLMConfig instance
    """
    candidates = [Path(config_file)] if config_file else list(STANDARD_CONFIG_PATHS)

    file_config: dict[str, Any] = {}
    for path in candidates:
        if path.exists():
            with path.open() as f:
                file_config = yaml.safe_load(f) or {}
            logger.debug("Loaded LLM config file", path=str(path))
            break
    else:
        if config_file:
            logger.warning("LLM config file not found", path=str(config_file))

    return LLMSettings().to_config(file_config)

"""
LLM integration for the vision fallback.

Provides the configuration and async client for an OpenAI-compatible
multimodal endpoint. The engine only uses it when the llm vision backend
is selected; otherwise the simulated locator runs without network access.
"""

from tabflow.llm.client import (
    ChatCompletion,
    ChatMessage,
    LLMAPIError,
    LLMAuthenticationError,
    LLMClient,
    LLMClientError,
    LLMRateLimitError,
)
from tabflow.llm.config import (
    ImageDetail,
    LLMConfig,
    LLMEndpointConfig,
    LLMProvider,
    LLMSettings,
    RetryConfig,
    VisionPromptConfig,
    load_llm_config,
)

__all__ = [
    # Config
    "ImageDetail",
    "LLMConfig",
    "LLMEndpointConfig",
    "LLMProvider",
    "LLMSettings",
    "RetryConfig",
    "VisionPromptConfig",
    "load_llm_config",
    # Client
    "ChatCompletion",
    "ChatMessage",
    "LLMAPIError",
    "LLMAuthenticationError",
    "LLMClient",
    "LLMClientError",
    "LLMRateLimitError",
]

"""
Async HTTP client for OpenAI-compatible multimodal chat APIs.

Provides:
- Async httpx-based HTTP client
- Concurrency limiting per endpoint
- Retry logic with exponential backoff
- Image content parts for screenshot analysis
"""

from __future__ import annotations

import asyncio
import base64
import random
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from tabflow.llm.config import ImageDetail, LLMEndpointConfig, LLMProvider, RetryConfig

logger = structlog.get_logger(__name__)


class LLMClientError(Exception):
    """Base exception for LLM client errors."""

    pass


class LLMRateLimitError(LLMClientError):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMClientError):
    """Raised when authentication fails."""

    pass


class LLMAPIError(LLMClientError):
    """Raised when API returns an error."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


@dataclass
class ChatMessage:
    """A single chat message; content is text or a list of content parts."""

    role: str  # "system", "user", "assistant"
    content: str | list[dict[str, Any]]

    @classmethod
    def with_image(
        cls,
        text: str,
        png: bytes,
        detail: ImageDetail = ImageDetail.HIGH,
    ) -> ChatMessage:
        """Build a user message carrying text plus an inline PNG."""
        encoded = base64.b64encode(png).decode("ascii")
        return cls(
            role="user",
            content=[
                {"type": "text", "text": text},
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:image/png;base64,{encoded}",
                        "detail": str(detail),
                    },
                },
            ],
        )


@dataclass
class ChatCompletion:
    """Response from a chat completion request."""

    content: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


class LLMClient:
    """
    Async client for OpenAI-compatible chat completion APIs.

    Features:
    - Bounded concurrent requests
    - Retry with exponential backoff on 429, 5xx and transport errors
    - OpenAI, Azure and custom endpoints
    """

    def __init__(
        self,
        endpoint: LLMEndpointConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._log = logger.bind(
            component="llm_client",
            provider=endpoint.provider,
            model=endpoint.model,
        )
        self._semaphore = asyncio.Semaphore(endpoint.concurrent_requests)

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(endpoint.timeout_ms / 1000),
        )

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def _build_url(self) -> str:
        if self._endpoint.provider == LLMProvider.AZURE:
            return (
                f"{self._endpoint.base_url}/openai/deployments/"
                f"{self._endpoint.azure_deployment}/chat/completions"
                f"?api-version={self._endpoint.azure_api_version}"
            )
        return f"{self._endpoint.base_url}/chat/completions"

    def _build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}

        api_key = self._endpoint.api_key.get_secret_value()
        if not api_key:
            return headers

        if self._endpoint.provider == LLMProvider.AZURE:
            headers["api-key"] = api_key
        else:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _build_request_body(
        self,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": self._endpoint.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self._endpoint.max_tokens,
        }

        # Azure carries the model in the deployment URL
        if self._endpoint.provider != LLMProvider.AZURE:
            body["model"] = self._endpoint.model

        body.update(kwargs)
        return body

    async def _post_once(self, url: str, headers: dict[str, str], body: dict[str, Any]) -> ChatCompletion:
        async with self._semaphore:
            response = await self._client.post(url, json=body, headers=headers)

        if response.status_code == 200:
            return self._parse_response(response.json())

        if response.status_code == 401:
            raise LLMAuthenticationError("Invalid API key or authentication failed")

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise LLMRateLimitError(
                "Rate limit exceeded",
                retry_after=float(retry_after) if retry_after else None,
            )

        try:
            error_body = response.json()
        except ValueError:
            error_body = {"error": response.text}

        raise LLMAPIError(
            f"API error: {response.status_code}",
            status_code=response.status_code,
            response_body=error_body,
        )

    async def _execute_with_retry(
        self,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> ChatCompletion:
        retry_config = self._endpoint.retry
        url = self._build_url()
        headers = self._build_headers()
        body = self._build_request_body(messages, temperature, max_tokens, **kwargs)

        for attempt in range(retry_config.max_retries + 1):
            try:
                return await self._post_once(url, headers, body)
            except LLMAuthenticationError:
                raise
            except (LLMRateLimitError, LLMAPIError, httpx.TransportError) as e:
                retryable = not isinstance(e, LLMAPIError) or (
                    e.status_code is not None and 500 <= e.status_code < 600
                )
                if not retryable or attempt >= retry_config.max_retries:
                    if isinstance(e, httpx.HTTPError):
                        raise LLMClientError(f"Request to {url} failed: {e}") from e
                    raise

                delay = self._calculate_backoff(attempt, retry_config)
                if isinstance(e, LLMRateLimitError) and e.retry_after:
                    delay = max(delay, e.retry_after * 1000)

                self._log.warning(
                    "Request failed, retrying",
                    attempt=attempt + 1,
                    max_retries=retry_config.max_retries,
                    delay_ms=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay / 1000)

        raise LLMClientError("Request failed after retries")

    def _calculate_backoff(self, attempt: int, config: RetryConfig) -> float:
        """Calculate exponential backoff delay with optional jitter."""
        delay = config.initial_delay_ms * (config.exponential_base**attempt)
        delay = min(delay, config.max_delay_ms)

        if config.jitter:
            delay = delay * (0.5 + random.random())

        return delay

    def _parse_response(self, data: dict[str, Any]) -> ChatCompletion:
        choices = data.get("choices", [])
        if not choices:
            raise LLMAPIError("No choices in response", response_body=data)

        choice = choices[0]
        message = choice.get("message", {})

        return ChatCompletion(
            content=message.get("content") or "",
            model=data.get("model", self._endpoint.model),
            usage=data.get("usage", {}),
            finish_reason=choice.get("finish_reason"),
            raw_response=data,
        )

    async def chat(
        self,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> ChatCompletion:
        """
        Send a chat completion request.

        Args:
            messages: List of chat messages
            temperature: Optional temperature override
            max_tokens: Optional max_tokens override
            **kwargs: Additional API parameters (response_format, etc.)

        Returns:
            ChatCompletion with the response

        Raises:
            LLMClientError: On transport or API errors
            LLMRateLimitError: When still rate limited after the last retry
            LLMAuthenticationError: On auth failures
        """
        self._log.debug("Sending chat request", message_count=len(messages))

        result = await self._execute_with_retry(
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )

        self._log.debug(
            "Chat request completed",
            tokens_used=result.usage.get("total_tokens"),
            finish_reason=result.finish_reason,
        )
        return result

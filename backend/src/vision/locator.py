"""
Vision fallback locators.

Given a natural-language description of a target and a screenshot of the
page, a locator returns click coordinates or None. "Not found" is a normal
answer, never an exception.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Protocol, runtime_checkable

import structlog

from tabflow.cdp.session_manager import Coordinates
from tabflow.llm.client import ChatMessage, LLMClient
from tabflow.llm.config import VisionPromptConfig

logger = structlog.get_logger(__name__)


@runtime_checkable
class VisionLocator(Protocol):
    """Resolves a described element to viewport coordinates."""

    async def resolve(self, description: str, screenshot: bytes) -> Coordinates | None:
        ...


class SimulatedVisionLocator:
    """
    Stand-in for a multimodal model.

    Waits a fixed delay, then reports the known login button position for
    descriptions mentioning a login or a button, and nothing otherwise.
    """

    KEYWORDS: tuple[str, ...] = ("login", "button")
    TARGET = Coordinates(220, 350)

    def __init__(self, delay_ms: int = 1500) -> None:
        self._delay = delay_ms / 1000
        self._log = logger.bind(component="simulated_vision")

    async def resolve(self, description: str, screenshot: bytes) -> Coordinates | None:
        self._log.info("Analyzing screenshot", description=description, screenshot_bytes=len(screenshot))
        await asyncio.sleep(self._delay)

        query = description.lower()
        if any(keyword in query for keyword in self.KEYWORDS):
            self._log.info("Identified target", x=self.TARGET.x, y=self.TARGET.y)
            return self.TARGET

        self._log.warning("Target not found in visual analysis", description=description)
        return None


LOCATOR_SYSTEM_PROMPT = """You locate UI elements in screenshots of web pages.
You receive a screenshot and a short description of one element.
Answer with a single JSON object and nothing else:
- {"x": <number>, "y": <number>} with the element's center in CSS pixels, or
- {"found": false} when the element is not visible.
"""


class LLMVisionLocator:
    """
    Asks a multimodal chat model where the described element is.

    Transport and API failures propagate as LLMClientError; answers that
    cannot be parsed count as "not found".
    """

    def __init__(self, client: LLMClient, prompt: VisionPromptConfig | None = None) -> None:
        self._client = client
        self._prompt = prompt or VisionPromptConfig()
        self._log = logger.bind(component="llm_vision")

    async def resolve(self, description: str, screenshot: bytes) -> Coordinates | None:
        messages = [
            ChatMessage(role="system", content=self._prompt.system_prompt or LOCATOR_SYSTEM_PROMPT),
            ChatMessage.with_image(
                f"Element to locate: {description}",
                screenshot,
                detail=self._prompt.image_detail,
            ),
        ]

        kwargs: dict[str, Any] = {}
        if self._prompt.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        self._log.info("Requesting visual location", description=description)
        completion = await self._client.chat(messages, **kwargs)

        coordinates = parse_coordinates(completion.content)
        if coordinates is None:
            self._log.warning(
                "Model did not locate target",
                description=description,
                content=completion.content[:200],
            )
        else:
            self._log.info("Model located target", x=coordinates.x, y=coordinates.y)
        return coordinates


def parse_coordinates(content: str) -> Coordinates | None:
    """
    Extract coordinates from a model answer.

    Accepts a bare JSON object or one wrapped in a markdown code block.
    """
    text = content.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None

    if not isinstance(data, dict) or data.get("found") is False:
        return None

    x, y = data.get("x"), data.get("y")
    if isinstance(x, bool) or isinstance(y, bool):
        return None
    if not isinstance(x, int | float) or not isinstance(y, int | float):
        return None
    return Coordinates(float(x), float(y))

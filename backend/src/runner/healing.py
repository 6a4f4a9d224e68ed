"""
Click target resolution with vision healing.

Resolves a CLICK step's parameters to viewport coordinates:
1. CSS selector -> DOM node -> box model centroid
2. On selector failure: screenshot + vision locator ("healing")
3. Literal x/y from the step as the last resort

A step with literal x/y and no selector skips straight to tier 3.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from tabflow.cdp.session_manager import (
    CommandError,
    Coordinates,
    SelectorNotFoundError,
    SessionManager,
)
from tabflow.dsl.models import StepParams
from tabflow.llm.client import LLMClientError
from tabflow.runner.errors import HealingFailedError
from tabflow.runner.events import EventKind, EventStatus
from tabflow.vision.locator import VisionLocator

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[EventKind, str, EventStatus], None]

DEFAULT_DESCRIPTION = "target element"


@dataclass
class HealingResult:
    """Outcome of one vision healing attempt."""

    success: bool
    selector: str
    description: str
    coordinates: Coordinates | None = None
    healing_time_ms: int = 0
    error: str | None = None


class TargetResolver:
    """
    Turns CLICK parameters into coordinates.

    Keeps counters of how targets were resolved so callers can report how
    often selectors drifted and how often vision recovered them.
    """

    def __init__(
        self,
        sessions: SessionManager,
        vision: VisionLocator,
        default_description: str = DEFAULT_DESCRIPTION,
    ) -> None:
        self._sessions = sessions
        self._vision = vision
        self._default_description = default_description
        self._stats = {
            "selector_hits": 0,
            "literal_coordinates": 0,
            "healing_attempts": 0,
            "healing_successes": 0,
            "healing_failures": 0,
        }
        self._healing_time_ms = 0
        self._log = logger.bind(component="target_resolver")

    async def resolve(
        self,
        tab_id: str,
        params: StepParams,
        progress: ProgressCallback,
    ) -> Coordinates:
        """
        Resolve click coordinates.

        Args:
            tab_id: Tab to resolve against
            params: The CLICK step's parameters
            progress: Called with healing progress (kind, message, status)

        Raises:
            HealingFailedError: Selector failed, vision found nothing and no literal x/y
            ValueError: Neither selector nor literal x/y were given
        """
        if not params.selector:
            if params.has_coordinates:
                self._stats["literal_coordinates"] += 1
                return Coordinates(params.x, params.y)
            raise ValueError("CLICK needs a selector or x/y coordinates")

        try:
            target = await self._resolve_selector(tab_id, params.selector)
            self._stats["selector_hits"] += 1
            self._log.debug("Resolved selector", tab_id=tab_id, selector=params.selector, x=target.x, y=target.y)
            return target
        except (SelectorNotFoundError, CommandError) as e:
            self._log.warning("Selector failed", tab_id=tab_id, selector=params.selector, error=str(e))

        result = await self._heal(tab_id, params.selector, params, progress)
        if result.success and result.coordinates is not None:
            return result.coordinates

        if params.has_coordinates:
            self._stats["literal_coordinates"] += 1
            self._log.warning(
                "Falling back to literal coordinates",
                selector=params.selector,
                x=params.x,
                y=params.y,
            )
            return Coordinates(params.x, params.y)

        raise HealingFailedError(params.selector, result.error or "target not located")

    async def _resolve_selector(self, tab_id: str, selector: str) -> Coordinates:
        root = await self._sessions.get_document(tab_id)
        node_id = await self._sessions.query_selector(tab_id, root["nodeId"], selector)
        if node_id is None:
            raise SelectorNotFoundError(selector, tab_id)
        return await self._sessions.element_center(tab_id, node_id)

    async def _heal(
        self,
        tab_id: str,
        selector: str,
        params: StepParams,
        progress: ProgressCallback,
    ) -> HealingResult:
        start_time = time.monotonic()
        description = params.description or self._default_description
        self._stats["healing_attempts"] += 1

        progress(
            EventKind.STEP_START,
            f"Selector '{selector}' failed. Initiating AI healing...",
            EventStatus.ERROR,
        )

        try:
            screenshot = await self._sessions.capture_screenshot(tab_id)
            progress(
                EventKind.STEP_START,
                f'AI analyzing visual target: "{description}"...',
                EventStatus.PENDING,
            )
            coordinates = await self._vision.resolve(description, screenshot)
        except (CommandError, LLMClientError) as e:
            elapsed_ms = int((time.monotonic() - start_time) * 1000)
            self._healing_time_ms += elapsed_ms
            self._stats["healing_failures"] += 1
            self._log.error("Vision healing failed", selector=selector, error=str(e))
            return HealingResult(
                success=False,
                selector=selector,
                description=description,
                healing_time_ms=elapsed_ms,
                error=str(e),
            )

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        self._healing_time_ms += elapsed_ms

        if coordinates is None:
            self._stats["healing_failures"] += 1
            self._log.warning("Vision could not locate target", description=description)
            return HealingResult(
                success=False,
                selector=selector,
                description=description,
                healing_time_ms=elapsed_ms,
                error=f'vision could not locate "{description}"',
            )

        self._stats["healing_successes"] += 1
        progress(
            EventKind.STEP_COMPLETE,
            f"AI found target at ({coordinates.x:g}, {coordinates.y:g})",
            EventStatus.SUCCESS,
        )
        self._log.info(
            "Healed click target",
            selector=selector,
            description=description,
            x=coordinates.x,
            y=coordinates.y,
            healing_time_ms=elapsed_ms,
        )
        return HealingResult(
            success=True,
            selector=selector,
            description=description,
            coordinates=coordinates,
            healing_time_ms=elapsed_ms,
        )

    def get_healing_stats(self) -> dict[str, Any]:
        """Get statistics about target resolution."""
        attempts = self._stats["healing_attempts"]
        return {
            **self._stats,
            "healing_success_rate": (
                self._stats["healing_successes"] / attempts if attempts > 0 else 0.0
            ),
            "avg_healing_time_ms": self._healing_time_ms / attempts if attempts > 0 else 0.0,
        }

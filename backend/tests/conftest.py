"""Pytest fixtures for tabflow tests."""

from __future__ import annotations

import base64
import itertools
import json
from collections import defaultdict
from collections.abc import Callable
from typing import Any

import pytest

from tabflow.cdp.connection import EventHandler
from tabflow.cdp.registry import TabRegistry
from tabflow.cdp.session_manager import Coordinates, SessionManager
from tabflow.cdp.tab_manager import TabManager
from tabflow.runner.events import EventBus, StrategyEvent
from tabflow.runner.healing import TargetResolver
from tabflow.runner.interpreter import StrategyInterpreter
from tabflow.vision.locator import SimulatedVisionLocator

PNG_BYTES = b"\x89PNG fake screenshot"

Response = dict[str, Any] | Exception | Callable[[dict[str, Any], str | None], dict[str, Any]]


class FakeCDPConnection:
    """
    In-memory stand-in for CDPConnection.

    Records every command as (method, params, session_id) and answers from
    scripted responses. A scripted response may be a result dict, an
    exception to raise, or a callable taking (params, session_id).
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any], str | None]] = []
        self.responses: dict[str, Response] = {}
        self.selectors: dict[str, int] = {}
        self.values: dict[str, str] = {}
        self.handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self.connected = True
        self.closed = False
        self._target_ids = itertools.count(1)

    @property
    def is_connected(self) -> bool:
        return self.connected

    def on(self, event: str, handler: EventHandler) -> None:
        self.handlers[event].append(handler)

    def fire_event(self, event: str, params: dict[str, Any], session_id: str | None = None) -> None:
        for handler in list(self.handlers[event]):
            handler(params, session_id)

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False
        self.closed = True

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        params = params or {}
        self.calls.append((method, params, session_id))

        scripted = self.responses.get(method)
        if isinstance(scripted, Exception):
            raise scripted
        if callable(scripted):
            return scripted(params, session_id)
        if scripted is not None:
            return scripted
        return self._default(method, params)

    def _default(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        match method:
            case "Target.attachToTarget":
                return {"sessionId": f"session-{params['targetId']}"}
            case "Target.createTarget":
                return {"targetId": f"shadow-{next(self._target_ids)}"}
            case "DOM.getDocument":
                return {"root": {"nodeId": 1}}
            case "DOM.querySelector":
                return {"nodeId": self.selectors.get(params["selector"], 0)}
            case "DOM.getBoxModel":
                return {
                    "model": {
                        "content": [100, 200, 140, 200, 140, 220, 100, 220],
                        "width": 40,
                        "height": 20,
                    }
                }
            case "Page.captureScreenshot":
                return {"data": base64.b64encode(PNG_BYTES).decode()}
            case "Runtime.evaluate":
                selector = params["expression"].split("querySelector(", 1)[1].split(");", 1)[0]
                value = next(
                    (v for key, v in self.values.items() if json.dumps(key) == selector),
                    None,
                )
                return {"result": {"type": "string", "value": value}}
            case _:
                return {}

    def methods(self) -> list[str]:
        return [method for method, _, _ in self.calls]

    def calls_for(self, method: str) -> list[tuple[dict[str, Any], str | None]]:
        return [(params, session_id) for m, params, session_id in self.calls if m == method]

    def clicks(self) -> list[Coordinates]:
        return [
            Coordinates(params["x"], params["y"])
            for params, _ in self.calls_for("Input.dispatchMouseEvent")
            if params["type"] == "mousePressed"
        ]


class FakeVisionLocator:
    """Vision locator returning a fixed answer and recording its queries."""

    def __init__(self, answer: Coordinates | None = None, error: Exception | None = None) -> None:
        self.answer = answer
        self.error = error
        self.queries: list[tuple[str, bytes]] = []

    async def resolve(self, description: str, screenshot: bytes) -> Coordinates | None:
        self.queries.append((description, screenshot))
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def connection() -> FakeCDPConnection:
    return FakeCDPConnection()


@pytest.fixture
def registry() -> TabRegistry:
    return TabRegistry()


@pytest.fixture
def sessions(connection: FakeCDPConnection, registry: TabRegistry) -> SessionManager:
    return SessionManager(connection, registry)  # type: ignore[arg-type]


@pytest.fixture
def tabs(connection: FakeCDPConnection, sessions: SessionManager) -> TabManager:
    return TabManager(connection, sessions)  # type: ignore[arg-type]


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded(events: EventBus) -> list[StrategyEvent]:
    """Every event published on the bus, in order."""
    received: list[StrategyEvent] = []
    events.add_listener(received.append)
    return received


@pytest.fixture
def vision() -> SimulatedVisionLocator:
    return SimulatedVisionLocator(delay_ms=0)


@pytest.fixture
def resolver(sessions: SessionManager, vision: SimulatedVisionLocator) -> TargetResolver:
    return TargetResolver(sessions, vision)


@pytest.fixture
def interpreter(
    sessions: SessionManager,
    tabs: TabManager,
    resolver: TargetResolver,
    events: EventBus,
) -> StrategyInterpreter:
    return StrategyInterpreter(
        sessions,
        tabs,
        resolver,
        events,
        step_settle_ms=0,
        default_wait_ms=0,
    )

"""
Debugging session management.

Owns the lifecycle of DevTools sessions attached to browser tabs:
- Idempotent attach / detach with local bookkeeping
- Command dispatch routed through the tab's flattened session
- DOM helpers (document root, selector lookup, element centroid)
- Screenshot capture and live value reads
- Passive cleanup when the browser drops a session on its own
"""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, NamedTuple

import structlog

from tabflow.cdp.connection import CDPConnection, CDPConnectionError, ProtocolError
from tabflow.cdp.registry import TabRegistry

logger = structlog.get_logger(__name__)


class SessionError(Exception):
    """Base exception for debugging session failures."""


class AttachError(SessionError):
    """Raised when a session cannot be attached to a tab."""

    def __init__(self, tab_id: str, cause: BaseException | None = None) -> None:
        self.tab_id = tab_id
        self.cause = cause
        super().__init__(f"Failed to attach debugger to tab {tab_id}: {cause}")


class DetachError(SessionError):
    """Raised when the browser refuses to detach a session."""

    def __init__(self, tab_id: str, cause: BaseException | None = None) -> None:
        self.tab_id = tab_id
        self.cause = cause
        super().__init__(f"Failed to detach debugger from tab {tab_id}: {cause}")


class CommandError(SessionError):
    """Raised when a protocol command fails on a tab."""

    def __init__(self, method: str, tab_id: str, cause: BaseException | None = None) -> None:
        self.method = method
        self.tab_id = tab_id
        self.cause = cause
        super().__init__(f"Command {method} failed on tab {tab_id}: {cause}")


class SelectorNotFoundError(SessionError):
    """Raised when a CSS selector matches no element on the page."""

    def __init__(self, selector: str, tab_id: str) -> None:
        self.selector = selector
        self.tab_id = tab_id
        super().__init__(f"Selector '{selector}' not found on tab {tab_id}")


class Coordinates(NamedTuple):
    """Viewport coordinates in CSS pixels."""

    x: float
    y: float


_READ_VALUE_EXPRESSION = (
    "(() => {{"
    " const el = document.querySelector({selector});"
    " if (!el) return null;"
    " return el.value || el.innerText;"
    " }})()"
)


class SessionManager:
    """
    Attaches DevTools sessions to tabs and issues commands through them.

    The registry is the single source of truth for which tabs hold a
    session. A failed detach leaves the entry in place so a later call can
    retry; sessions the browser drops on its own are pruned from events.

    Usage:
        sessions = SessionManager(connection, registry)
        await sessions.attach(tab_id)
        await sessions.click_at(tab_id, 120, 48)
    """

    def __init__(
        self,
        connection: CDPConnection,
        registry: TabRegistry,
        command_timeout: float | None = None,
    ) -> None:
        self._connection = connection
        self._registry = registry
        self._command_timeout = command_timeout
        self._log = logger.bind(component="session_manager")

        connection.on("Target.detachedFromTarget", self._on_detached_from_target)
        connection.on("Target.targetDestroyed", self._on_target_destroyed)

    @property
    def registry(self) -> TabRegistry:
        return self._registry

    def is_attached(self, tab_id: str) -> bool:
        return self._registry.has_session(tab_id)

    def attached_tabs(self) -> list[str]:
        return self._registry.attached_tabs()

    async def attach(self, tab_id: str) -> None:
        """
        Attach a session to a tab.

        Attaching an already attached tab is a no-op.

        Raises:
            AttachError: The browser rejected the attach
        """
        if self._registry.has_session(tab_id):
            self._log.debug("Tab already attached", tab_id=tab_id)
            return

        try:
            result = await self._call(
                "Target.attachToTarget",
                {"targetId": tab_id, "flatten": True},
            )
        except (ProtocolError, CDPConnectionError, TimeoutError) as e:
            self._log.error("Attach failed", tab_id=tab_id, error=str(e))
            raise AttachError(tab_id, e) from e

        session_id = result.get("sessionId")
        if not session_id:
            raise AttachError(tab_id, ValueError("no sessionId in attach response"))

        # A concurrent attach may have finished while we were waiting
        if self._registry.has_session(tab_id):
            self._log.debug("Tab attached concurrently", tab_id=tab_id)
            return

        self._registry.set_session(tab_id, session_id)
        self._log.info("Debugger attached", tab_id=tab_id, session_id=session_id)

    async def detach(self, tab_id: str) -> None:
        """
        Detach the session from a tab.

        No-op when the tab has no session. Bookkeeping is only cleared when
        the browser confirms the detach.

        Raises:
            DetachError: The browser rejected the detach
        """
        session_id = self._registry.session_id(tab_id)
        if session_id is None:
            return

        try:
            await self._call("Target.detachFromTarget", {"sessionId": session_id})
        except (ProtocolError, CDPConnectionError, TimeoutError) as e:
            self._log.error("Detach failed", tab_id=tab_id, error=str(e))
            raise DetachError(tab_id, e) from e

        self._registry.clear_session(tab_id)
        self._log.info("Debugger detached", tab_id=tab_id)

    async def detach_all(self) -> None:
        """Detach every session, logging failures."""
        for tab_id in self._registry.attached_tabs():
            try:
                await self.detach(tab_id)
            except DetachError as e:
                self._log.warning("Detach during shutdown failed", tab_id=tab_id, error=str(e))

    async def ensure_attached(self, tab_id: str) -> None:
        """Re-attach a tab whose session is missing from bookkeeping."""
        if not self._registry.has_session(tab_id):
            self._log.info("Re-attaching tab", tab_id=tab_id)
            await self.attach(tab_id)

    async def send_command(
        self,
        tab_id: str,
        method: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Issue a protocol command on a tab's session.

        Args:
            tab_id: Target tab
            method: Protocol method name
            params: Method parameters

        Returns:
            The command result object

        Raises:
            CommandError: Attach, transport or protocol failure
        """
        try:
            await self.ensure_attached(tab_id)
            session_id = self._registry.session_id(tab_id)
            self._log.debug("Sending command", tab_id=tab_id, method=method)
            return await self._call(method, params, session_id=session_id)
        except (AttachError, ProtocolError, CDPConnectionError, TimeoutError) as e:
            self._log.error("Command failed", tab_id=tab_id, method=method, error=str(e))
            raise CommandError(method, tab_id, e) from e

    async def click_at(self, tab_id: str, x: float, y: float) -> None:
        """Dispatch a left-button press and release at (x, y)."""
        for event_type in ("mousePressed", "mouseReleased"):
            await self.send_command(
                tab_id,
                "Input.dispatchMouseEvent",
                {
                    "type": event_type,
                    "x": x,
                    "y": y,
                    "button": "left",
                    "clickCount": 1,
                },
            )

    async def insert_text(self, tab_id: str, text: str) -> None:
        """Insert literal text into the focused element."""
        await self.send_command(tab_id, "Input.insertText", {"text": text})

    async def get_document(self, tab_id: str) -> dict[str, Any]:
        """Fetch the full DOM tree and return its root node."""
        result = await self.send_command(tab_id, "DOM.getDocument", {"depth": -1})
        return result["root"]

    async def query_selector(self, tab_id: str, node_id: int, selector: str) -> int | None:
        """
        Resolve a CSS selector under a node.

        Returns:
            The matching node id, or None when nothing matches or the lookup fails
        """
        try:
            result = await self.send_command(
                tab_id,
                "DOM.querySelector",
                {"nodeId": node_id, "selector": selector},
            )
        except CommandError as e:
            self._log.debug("Selector lookup failed", tab_id=tab_id, selector=selector, error=str(e))
            return None

        found = result.get("nodeId") or None
        return found

    async def get_box_model(self, tab_id: str, node_id: int) -> dict[str, Any]:
        result = await self.send_command(tab_id, "DOM.getBoxModel", {"nodeId": node_id})
        return result["model"]

    @staticmethod
    def centroid(model: dict[str, Any]) -> Coordinates:
        """Center of a box model's content quad."""
        content = model["content"]
        return Coordinates(
            x=content[0] + model["width"] / 2,
            y=content[1] + model["height"] / 2,
        )

    async def element_center(self, tab_id: str, node_id: int) -> Coordinates:
        return self.centroid(await self.get_box_model(tab_id, node_id))

    async def capture_screenshot(self, tab_id: str) -> bytes:
        """Capture the page as PNG bytes."""
        result = await self.send_command(tab_id, "Page.captureScreenshot", {"format": "png"})
        return base64.b64decode(result["data"])

    async def read_value(self, tab_id: str, selector: str) -> str:
        """
        Read the live value (or text) of the element matching a selector.

        Raises:
            SelectorNotFoundError: No element matches the selector
            CommandError: Evaluation failed
        """
        expression = _READ_VALUE_EXPRESSION.format(selector=json.dumps(selector))
        result = await self.send_command(
            tab_id,
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True},
        )

        details = result.get("exceptionDetails")
        if details:
            raise CommandError(
                "Runtime.evaluate",
                tab_id,
                ProtocolError("Runtime.evaluate", None, details.get("text", "evaluation threw")),
            )

        value = result.get("result", {}).get("value")
        if value is None:
            raise SelectorNotFoundError(selector, tab_id)
        return str(value)

    async def _call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        coro = self._connection.send(method, params, session_id=session_id)
        if self._command_timeout is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=self._command_timeout)

    def _on_detached_from_target(self, params: dict[str, Any], _session_id: str | None) -> None:
        session_id = params.get("sessionId")
        tab_id = self._registry.tab_for_session(session_id) if session_id else None
        if tab_id is None:
            tab_id = params.get("targetId")
        if tab_id is None or not self._registry.has_session(tab_id):
            return

        self._registry.clear_session(tab_id)
        self._log.info("Debugger detached externally", tab_id=tab_id, reason=params.get("reason"))

    def _on_target_destroyed(self, params: dict[str, Any], _session_id: str | None) -> None:
        tab_id = params.get("targetId")
        if tab_id and self._registry.has_session(tab_id):
            self._registry.clear_session(tab_id)
            self._log.info("Session invalidated by tab removal", tab_id=tab_id)

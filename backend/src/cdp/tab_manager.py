"""
Shadow tab lifecycle.

Shadow tabs are background tabs the engine opens for a strategy run. Each is
session-attached for its whole lifetime and torn down when closed, when
creation fails halfway, or when the browser removes it.
"""

from __future__ import annotations

from typing import Any

import structlog

from tabflow.cdp.connection import CDPConnection, CDPConnectionError, ProtocolError
from tabflow.cdp.registry import TabRegistry
from tabflow.cdp.session_manager import AttachError, DetachError, SessionError, SessionManager

logger = structlog.get_logger(__name__)


class ShadowTabCreationError(SessionError):
    """Raised when the browser refuses to open a shadow tab."""

    def __init__(self, url: str, cause: BaseException | None = None) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"Failed to create shadow tab for {url}: {cause}")


class TabManager:
    """
    Creates and destroys engine-owned background tabs.

    Usage:
        tabs = TabManager(connection, sessions)
        tab_id = await tabs.create_shadow_tab("https://example.com")
        ...
        await tabs.close_shadow_tab(tab_id)
    """

    def __init__(self, connection: CDPConnection, sessions: SessionManager) -> None:
        self._connection = connection
        self._sessions = sessions
        self._registry: TabRegistry = sessions.registry
        self._log = logger.bind(component="tab_manager")

        connection.on("Target.targetDestroyed", self._on_target_destroyed)

    def is_shadow(self, tab_id: str) -> bool:
        return self._registry.is_shadow(tab_id)

    def shadow_tabs(self) -> list[str]:
        return self._registry.shadow_tabs()

    async def create_shadow_tab(self, url: str) -> str:
        """
        Open a background tab at url and attach a session to it.

        If the attach fails the new tab is closed before the original
        AttachError propagates.

        Returns:
            The new tab id

        Raises:
            ShadowTabCreationError: The tab could not be opened
            AttachError: The tab opened but no session could be attached
        """
        try:
            result = await self._connection.send(
                "Target.createTarget",
                {"url": url, "background": True},
            )
        except (ProtocolError, CDPConnectionError) as e:
            self._log.error("Shadow tab creation failed", url=url, error=str(e))
            raise ShadowTabCreationError(url, e) from e

        tab_id: str | None = result.get("targetId")
        if not tab_id:
            raise ShadowTabCreationError(url, ValueError("no targetId in createTarget response"))

        self._registry.mark_shadow(tab_id)

        try:
            await self._sessions.attach(tab_id)
        except AttachError:
            self._log.warning("Attach to new shadow tab failed; closing it", tab_id=tab_id)
            await self._close_target(tab_id)
            self._registry.unmark_shadow(tab_id)
            raise

        self._log.info("Shadow tab created", tab_id=tab_id, url=url)
        return tab_id

    async def close_shadow_tab(self, tab_id: str) -> None:
        """
        Close a shadow tab.

        No-op for tabs the engine does not own. Detach is best effort; the
        tab is closed and unregistered regardless.
        """
        if not self._registry.is_shadow(tab_id):
            return

        try:
            await self._sessions.detach(tab_id)
        except DetachError as e:
            self._log.warning("Detach before close failed", tab_id=tab_id, error=str(e))

        await self._close_target(tab_id)
        self._registry.unmark_shadow(tab_id)
        self._log.info("Shadow tab closed", tab_id=tab_id)

    async def close_all(self) -> None:
        for tab_id in self.shadow_tabs():
            await self.close_shadow_tab(tab_id)

    async def _close_target(self, tab_id: str) -> None:
        try:
            await self._connection.send("Target.closeTarget", {"targetId": tab_id})
        except (ProtocolError, CDPConnectionError) as e:
            self._log.warning("Closing tab failed", tab_id=tab_id, error=str(e))

    def _on_target_destroyed(self, params: dict[str, Any], _session_id: str | None) -> None:
        tab_id = params.get("targetId")
        if tab_id and self._registry.is_shadow(tab_id):
            self._registry.unmark_shadow(tab_id)
            self._log.info("Shadow tab removed", tab_id=tab_id)

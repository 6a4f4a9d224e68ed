"""Tests for shadow tab lifecycle."""

from __future__ import annotations

import pytest
from conftest import FakeCDPConnection

from tabflow.cdp.connection import CDPConnectionError, ProtocolError
from tabflow.cdp.session_manager import AttachError, SessionManager
from tabflow.cdp.tab_manager import ShadowTabCreationError, TabManager


class TestCreateShadowTab:
    """Tests for TabManager.create_shadow_tab."""

    @pytest.mark.asyncio
    async def test_creates_background_tab_and_attaches(
        self,
        tabs: TabManager,
        sessions: SessionManager,
        connection: FakeCDPConnection,
    ) -> None:
        tab_id = await tabs.create_shadow_tab("https://example.com/login")

        assert tab_id == "shadow-1"
        assert tabs.is_shadow(tab_id)
        assert sessions.is_attached(tab_id)
        assert connection.calls[0] == (
            "Target.createTarget",
            {"url": "https://example.com/login", "background": True},
            None,
        )

    @pytest.mark.asyncio
    async def test_create_failure(self, tabs: TabManager, connection: FakeCDPConnection) -> None:
        connection.responses["Target.createTarget"] = ProtocolError("Target.createTarget", -32000, "denied")

        with pytest.raises(ShadowTabCreationError) as exc_info:
            await tabs.create_shadow_tab("https://example.com")

        assert exc_info.value.url == "https://example.com"
        assert tabs.shadow_tabs() == []

    @pytest.mark.asyncio
    async def test_attach_failure_closes_new_tab(
        self, tabs: TabManager, connection: FakeCDPConnection
    ) -> None:
        """Test that a tab which cannot be attached is not left open."""
        connection.responses["Target.attachToTarget"] = ProtocolError(
            "Target.attachToTarget", -32000, "no"
        )

        with pytest.raises(AttachError):
            await tabs.create_shadow_tab("https://example.com")

        assert connection.calls_for("Target.closeTarget") == [({"targetId": "shadow-1"}, None)]
        assert tabs.shadow_tabs() == []


class TestCloseShadowTab:
    """Tests for TabManager.close_shadow_tab."""

    @pytest.mark.asyncio
    async def test_close_detaches_and_closes(
        self,
        tabs: TabManager,
        sessions: SessionManager,
        connection: FakeCDPConnection,
    ) -> None:
        tab_id = await tabs.create_shadow_tab("https://example.com")

        await tabs.close_shadow_tab(tab_id)

        assert connection.methods()[-2:] == ["Target.detachFromTarget", "Target.closeTarget"]
        assert not tabs.is_shadow(tab_id)
        assert not sessions.is_attached(tab_id)
        assert len(sessions.registry) == 0

    @pytest.mark.asyncio
    async def test_close_foreign_tab_is_noop(
        self,
        tabs: TabManager,
        sessions: SessionManager,
        connection: FakeCDPConnection,
    ) -> None:
        """Test that the user's own tabs are never closed."""
        await sessions.attach("user-tab")
        connection.calls.clear()

        await tabs.close_shadow_tab("user-tab")

        assert connection.calls == []
        assert sessions.is_attached("user-tab")

    @pytest.mark.asyncio
    async def test_close_survives_detach_failure(
        self, tabs: TabManager, connection: FakeCDPConnection
    ) -> None:
        tab_id = await tabs.create_shadow_tab("https://example.com")
        connection.responses["Target.detachFromTarget"] = CDPConnectionError("dropped")

        await tabs.close_shadow_tab(tab_id)

        assert connection.calls_for("Target.closeTarget") == [({"targetId": tab_id}, None)]
        assert not tabs.is_shadow(tab_id)

    @pytest.mark.asyncio
    async def test_close_all(self, tabs: TabManager, connection: FakeCDPConnection) -> None:
        await tabs.create_shadow_tab("https://a.example.com")
        await tabs.create_shadow_tab("https://b.example.com")

        await tabs.close_all()

        assert tabs.shadow_tabs() == []
        assert len(connection.calls_for("Target.closeTarget")) == 2

    @pytest.mark.asyncio
    async def test_tab_removed_by_browser(
        self,
        tabs: TabManager,
        sessions: SessionManager,
        connection: FakeCDPConnection,
    ) -> None:
        tab_id = await tabs.create_shadow_tab("https://example.com")

        connection.fire_event("Target.targetDestroyed", {"targetId": tab_id})

        assert not tabs.is_shadow(tab_id)
        assert not sessions.is_attached(tab_id)
        assert len(sessions.registry) == 0

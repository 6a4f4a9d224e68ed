"""Tests for debugging session management and tab bookkeeping."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from conftest import PNG_BYTES, FakeCDPConnection

from tabflow.cdp.connection import CDPConnectionError, ProtocolError
from tabflow.cdp.registry import TabRegistry
from tabflow.cdp.session_manager import (
    AttachError,
    CommandError,
    Coordinates,
    DetachError,
    SelectorNotFoundError,
    SessionManager,
)


class TestTabRegistry:
    """Tests for TabRegistry."""

    def test_session_and_shadow_share_entry(self) -> None:
        registry = TabRegistry()
        registry.mark_shadow("t1")
        registry.set_session("t1", "s1")

        assert len(registry) == 1
        assert registry.is_shadow("t1")
        assert registry.session_id("t1") == "s1"
        assert registry.tab_for_session("s1") == "t1"

    def test_empty_entries_pruned(self) -> None:
        registry = TabRegistry()
        registry.set_session("t1", "s1")
        registry.clear_session("t1")

        assert "t1" not in registry

    def test_shadow_survives_session_loss(self) -> None:
        registry = TabRegistry()
        registry.mark_shadow("t1")
        registry.set_session("t1", "s1")
        registry.clear_session("t1")

        assert registry.is_shadow("t1")
        assert registry.attached_tabs() == []
        assert registry.shadow_tabs() == ["t1"]


class TestAttachDetach:
    """Tests for attach and detach bookkeeping."""

    @pytest.mark.asyncio
    async def test_attach_records_session(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        await sessions.attach("t1")

        assert sessions.is_attached("t1")
        assert connection.calls == [
            ("Target.attachToTarget", {"targetId": "t1", "flatten": True}, None)
        ]

    @pytest.mark.asyncio
    async def test_attach_is_idempotent(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        await sessions.attach("t1")
        await sessions.attach("t1")

        assert connection.methods().count("Target.attachToTarget") == 1

    @pytest.mark.asyncio
    async def test_attach_failure(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        """Test that a rejected attach leaves no bookkeeping behind."""
        connection.responses["Target.attachToTarget"] = ProtocolError(
            "Target.attachToTarget", -32000, "No target with given id"
        )

        with pytest.raises(AttachError) as exc_info:
            await sessions.attach("t1")

        assert exc_info.value.tab_id == "t1"
        assert not sessions.is_attached("t1")

    @pytest.mark.asyncio
    async def test_attach_without_session_id(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        connection.responses["Target.attachToTarget"] = {}

        with pytest.raises(AttachError, match="sessionId"):
            await sessions.attach("t1")

    @pytest.mark.asyncio
    async def test_detach_unattached_is_noop(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        await sessions.detach("t1")

        assert connection.calls == []

    @pytest.mark.asyncio
    async def test_detach_clears_bookkeeping(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        await sessions.attach("t1")
        await sessions.detach("t1")

        assert not sessions.is_attached("t1")
        assert connection.calls_for("Target.detachFromTarget") == [({"sessionId": "session-t1"}, None)]

    @pytest.mark.asyncio
    async def test_failed_detach_keeps_session(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        """Test that bookkeeping survives a rejected detach so it can be retried."""
        await sessions.attach("t1")
        connection.responses["Target.detachFromTarget"] = CDPConnectionError("socket closed")

        with pytest.raises(DetachError):
            await sessions.detach("t1")

        assert sessions.is_attached("t1")

    @pytest.mark.asyncio
    async def test_detach_all_continues_past_failures(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        await sessions.attach("t1")
        await sessions.attach("t2")

        def detach(params: dict[str, Any], session_id: str | None) -> dict[str, Any]:
            if params["sessionId"] == "session-t1":
                raise ProtocolError("Target.detachFromTarget", None, "busy")
            return {}

        connection.responses["Target.detachFromTarget"] = detach

        await sessions.detach_all()

        assert sessions.attached_tabs() == ["t1"]

    @pytest.mark.asyncio
    async def test_browser_detach_event_clears_session(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        await sessions.attach("t1")

        connection.fire_event(
            "Target.detachedFromTarget",
            {"sessionId": "session-t1", "reason": "canceled_by_user"},
        )

        assert not sessions.is_attached("t1")

    @pytest.mark.asyncio
    async def test_tab_removal_clears_session(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        await sessions.attach("t1")

        connection.fire_event("Target.targetDestroyed", {"targetId": "t1"})

        assert not sessions.is_attached("t1")

    @pytest.mark.asyncio
    async def test_command_timeout(self, connection: FakeCDPConnection, registry: TabRegistry) -> None:
        sessions = SessionManager(connection, registry, command_timeout=0.01)  # type: ignore[arg-type]

        async def never_answers(*args: Any, **kwargs: Any) -> dict[str, Any]:
            await asyncio.sleep(10)
            return {}

        connection.send = never_answers  # type: ignore[method-assign]

        with pytest.raises(AttachError):
            await sessions.attach("t1")


class TestCommands:
    """Tests for command dispatch and DOM helpers."""

    @pytest.mark.asyncio
    async def test_command_reattaches_missing_session(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        """Test that a command on an unattached tab attaches first."""
        await sessions.send_command("t1", "Page.reload")

        assert connection.calls == [
            ("Target.attachToTarget", {"targetId": "t1", "flatten": True}, None),
            ("Page.reload", {}, "session-t1"),
        ]

    @pytest.mark.asyncio
    async def test_command_error_wraps_protocol_error(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        connection.responses["Page.reload"] = ProtocolError("Page.reload", -32000, "nope")

        with pytest.raises(CommandError) as exc_info:
            await sessions.send_command("t1", "Page.reload")

        assert exc_info.value.method == "Page.reload"
        assert "Command Page.reload failed on tab t1" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_command_error_wraps_attach_failure(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        connection.responses["Target.attachToTarget"] = CDPConnectionError("gone")

        with pytest.raises(CommandError):
            await sessions.send_command("t1", "Page.reload")

    @pytest.mark.asyncio
    async def test_click_dispatches_press_and_release(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        await sessions.click_at("t1", 220, 350)

        mouse = connection.calls_for("Input.dispatchMouseEvent")
        assert [params["type"] for params, _ in mouse] == ["mousePressed", "mouseReleased"]
        for params, session_id in mouse:
            assert params["x"] == 220
            assert params["y"] == 350
            assert params["button"] == "left"
            assert params["clickCount"] == 1
            assert session_id == "session-t1"

    @pytest.mark.asyncio
    async def test_insert_text(self, sessions: SessionManager, connection: FakeCDPConnection) -> None:
        await sessions.insert_text("t1", "hello")

        assert connection.calls_for("Input.insertText") == [({"text": "hello"}, "session-t1")]

    @pytest.mark.asyncio
    async def test_query_selector_not_found(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        assert await sessions.query_selector("t1", 1, "#missing") is None

    @pytest.mark.asyncio
    async def test_query_selector_failure_is_not_found(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        connection.responses["DOM.querySelector"] = ProtocolError("DOM.querySelector", -32000, "bad selector")

        assert await sessions.query_selector("t1", 1, "##") is None

    @pytest.mark.asyncio
    async def test_element_center(self, sessions: SessionManager, connection: FakeCDPConnection) -> None:
        connection.selectors["#login"] = 5

        root = await sessions.get_document("t1")
        node_id = await sessions.query_selector("t1", root["nodeId"], "#login")
        assert node_id == 5

        center = await sessions.element_center("t1", node_id)
        assert center == Coordinates(120, 210)

    def test_centroid(self) -> None:
        model = {"content": [10, 20, 50, 20, 50, 80, 10, 80], "width": 40, "height": 60}
        assert SessionManager.centroid(model) == Coordinates(30, 50)

    @pytest.mark.asyncio
    async def test_capture_screenshot_decodes(self, sessions: SessionManager) -> None:
        assert await sessions.capture_screenshot("t1") == PNG_BYTES

    @pytest.mark.asyncio
    async def test_read_value(self, sessions: SessionManager, connection: FakeCDPConnection) -> None:
        connection.values["#extracted-name"] = "Tan Ah Kow"

        assert await sessions.read_value("t1", "#extracted-name") == "Tan Ah Kow"

    @pytest.mark.asyncio
    async def test_read_value_missing_element(self, sessions: SessionManager) -> None:
        with pytest.raises(SelectorNotFoundError):
            await sessions.read_value("t1", "#nothing")

    @pytest.mark.asyncio
    async def test_read_value_script_exception(
        self, sessions: SessionManager, connection: FakeCDPConnection
    ) -> None:
        connection.responses["Runtime.evaluate"] = {
            "result": {"type": "object"},
            "exceptionDetails": {"text": "Uncaught SyntaxError"},
        }

        with pytest.raises(CommandError, match="SyntaxError"):
            await sessions.read_value("t1", "#x")

"""
Async transport for the Chrome DevTools Protocol.

Holds a single browser-level websocket and multiplexes:
- Request/response matching by message id
- Flattened per-target sessions (sessionId on every message)
- Event fan-out to registered handlers
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
from collections import defaultdict
from typing import Any, Callable

import httpx
import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

logger = structlog.get_logger(__name__)

EventHandler = Callable[[dict[str, Any], str | None], None]


class CDPConnectionError(Exception):
    """Raised when the DevTools endpoint cannot be reached or the socket drops."""


class ProtocolError(Exception):
    """Raised when the browser answers a command with an error object."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        self.method = method
        self.code = code
        super().__init__(f"{method} failed: {message} (code {code})")


async def discover_browser_endpoint(
    http_endpoint: str,
    expected_protocol: str = "1.3",
    http_client: httpx.AsyncClient | None = None,
) -> str:
    """
    Resolve the browser websocket URL from the /json/version endpoint.

    Args:
        http_endpoint: Base URL such as http://127.0.0.1:9222
        expected_protocol: Protocol version the engine targets
        http_client: Optional client (tests inject a mock transport)

    Returns:
        The browser-level webSocketDebuggerUrl
    """
    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(5.0), trust_env=False)
    try:
        response = await client.get(f"{http_endpoint}/json/version")
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise CDPConnectionError(f"DevTools endpoint not available at {http_endpoint}: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    ws_url = data.get("webSocketDebuggerUrl")
    if not ws_url:
        raise CDPConnectionError("DevTools endpoint did not report a webSocketDebuggerUrl")

    protocol = data.get("Protocol-Version")
    if protocol and protocol != expected_protocol:
        logger.warning(
            "DevTools protocol version mismatch",
            expected=expected_protocol,
            reported=protocol,
        )

    logger.info(
        "Discovered browser endpoint",
        browser=data.get("Browser"),
        protocol=protocol,
    )
    return ws_url


class CDPConnection:
    """
    Browser-level DevTools connection.

    Usage:
        connection = CDPConnection("ws://127.0.0.1:9222/devtools/browser/...")
        await connection.connect()
        result = await connection.send("Target.getTargets")
        await connection.close()
    """

    def __init__(self, ws_url: str, max_message_size: int | None = None) -> None:
        self._ws_url = ws_url
        self._max_message_size = max_message_size
        self._ws: ClientConnection | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, tuple[str, asyncio.Future[dict[str, Any]]]] = {}
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._reader_task: asyncio.Task[None] | None = None
        self._log = logger.bind(component="cdp_connection")

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self._reader_task is not None and not self._reader_task.done()

    async def connect(self) -> None:
        """Open the websocket and start the reader loop."""
        if self.is_connected:
            return

        try:
            self._ws = await connect(self._ws_url, max_size=self._max_message_size)
        except (OSError, ConnectionClosed) as e:
            raise CDPConnectionError(f"Could not connect to {self._ws_url}: {e}") from e

        self._reader_task = asyncio.create_task(self._read_loop(self._ws))
        self._log.info("Connected to browser", url=self._ws_url)

    async def close(self) -> None:
        """Close the websocket and fail any in-flight commands."""
        if self._ws is not None:
            await self._ws.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        self._fail_pending(CDPConnectionError("Connection closed"))
        self._ws = None
        self._reader_task = None
        self._log.info("Browser connection closed")

    async def __aenter__(self) -> CDPConnection:
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def on(self, event: str, handler: EventHandler) -> None:
        """Register a handler called with (params, session_id) for a protocol event."""
        self._handlers[event].append(handler)

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Send a command and wait for its result.

        Args:
            method: Protocol method, e.g. "DOM.getDocument"
            params: Method parameters
            session_id: Target session for flattened per-tab commands

        Returns:
            The "result" object of the response

        Raises:
            ProtocolError: The browser returned an error object
            CDPConnectionError: The socket is not open or closed mid-flight
        """
        if self._ws is None:
            raise CDPConnectionError("Not connected")

        msg_id = next(self._ids)
        payload: dict[str, Any] = {"id": msg_id, "method": method, "params": params or {}}
        if session_id:
            payload["sessionId"] = session_id

        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = (method, future)

        try:
            await self._ws.send(json.dumps(payload))
            return await future
        except ConnectionClosed as e:
            raise CDPConnectionError(f"Connection closed while sending {method}") from e
        finally:
            self._pending.pop(msg_id, None)

    async def _read_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    self._log.warning("Discarding non-JSON frame")
                    continue
                self._dispatch(message)
        except ConnectionClosed as e:
            self._log.warning("Browser connection dropped", reason=str(e))
        finally:
            self._fail_pending(CDPConnectionError("Connection closed"))

    def _dispatch(self, message: dict[str, Any]) -> None:
        if "id" in message:
            entry = self._pending.get(message["id"])
            if entry is None:
                return
            method, future = entry
            if future.done():
                return
            if "error" in message:
                error = message["error"]
                future.set_exception(
                    ProtocolError(method, error.get("code"), error.get("message", "unknown error"))
                )
            else:
                future.set_result(message.get("result", {}))
            return

        event = message.get("method")
        if not event:
            return
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(message.get("params", {}), message.get("sessionId"))
            except Exception as e:
                self._log.error("Event handler failed", event_name=event, error=str(e))

    def _fail_pending(self, error: Exception) -> None:
        for _, future in self._pending.values():
            if not future.done():
                future.set_exception(error)

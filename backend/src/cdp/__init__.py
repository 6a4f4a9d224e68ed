"""
DevTools protocol layer.

Connects to the host browser and manages:
- The browser-level websocket transport
- Debugging sessions attached to individual tabs
- Engine-owned background ("shadow") tabs
"""

from tabflow.cdp.connection import (
    CDPConnection,
    CDPConnectionError,
    ProtocolError,
    discover_browser_endpoint,
)
from tabflow.cdp.registry import TabEntry, TabRegistry
from tabflow.cdp.session_manager import (
    AttachError,
    CommandError,
    Coordinates,
    DetachError,
    SelectorNotFoundError,
    SessionError,
    SessionManager,
)
from tabflow.cdp.tab_manager import ShadowTabCreationError, TabManager

__all__ = [
    # Transport
    "CDPConnection",
    "CDPConnectionError",
    "ProtocolError",
    "discover_browser_endpoint",
    # Bookkeeping
    "TabEntry",
    "TabRegistry",
    # Sessions
    "SessionManager",
    "Coordinates",
    "SessionError",
    "AttachError",
    "DetachError",
    "CommandError",
    "SelectorNotFoundError",
    # Tabs
    "TabManager",
    "ShadowTabCreationError",
]

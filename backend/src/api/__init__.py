"""
Command surface for the automation engine.

The dispatcher maps command envelopes onto engine operations; the FastAPI
gateway in tabflow.api.main serves it over HTTP and WebSocket.
"""

from tabflow.api.commands import (
    CommandDispatcher,
    CommandRequest,
    CommandResponse,
    CommandType,
    DebuggerAction,
)

__all__ = [
    "CommandDispatcher",
    "CommandRequest",
    "CommandResponse",
    "CommandType",
    "DebuggerAction",
]

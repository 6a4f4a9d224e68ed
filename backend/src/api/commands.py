"""
Command envelope and dispatch.

Requests arrive as {"type", "payload"} and are answered with
{"success": true, "result": ...} or {"success": false, "error": "..."}.
Every failure also reaches the progress feed as an ERROR event.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tabflow.cdp.session_manager import SessionManager
from tabflow.dsl.catalog import StrategyCatalog, StrategyNotFoundError
from tabflow.orchestrator.bridge import BridgeOrchestrator
from tabflow.runner.errors import StrategyError
from tabflow.runner.events import EventBus, EventKind, EventStatus
from tabflow.runner.interpreter import StrategyInterpreter

logger = structlog.get_logger(__name__)


class CommandType(StrEnum):
    """Request types understood by the dispatcher."""

    ATTACH_DEBUGGER = "ATTACH_DEBUGGER"
    DEBUGGER_COMMAND = "DEBUGGER_COMMAND"
    EXECUTE_STRATEGY = "EXECUTE_STRATEGY"
    EXECUTE_CLINICAL_BRIDGE = "EXECUTE_CLINICAL_BRIDGE"


class DebuggerAction(StrEnum):
    CLICK = "CLICK"
    TYPE = "TYPE"


class CommandRequest(BaseModel):
    """Incoming command envelope."""

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class CommandResponse(BaseModel):
    """Outgoing command envelope."""

    success: bool
    result: Any = None
    error: str | None = None

    def to_envelope(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "result": self.result}
        return {"success": False, "error": self.error}


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class AttachPayload(_Payload):
    tab_id: str = Field(alias="tabId", min_length=1)


class DebuggerCommandPayload(_Payload):
    tab_id: str = Field(alias="tabId", min_length=1)
    command: DebuggerAction
    args: dict[str, Any] = Field(default_factory=dict)


class ExecuteStrategyPayload(_Payload):
    id: str
    input_data: dict[str, Any] = Field(default_factory=dict, alias="inputData")
    tab_id: str | None = Field(default=None, alias="tabId")


class BridgePayload(_Payload):
    tab_id: str = Field(alias="tabId", min_length=1)


class InvalidCommandError(Exception):
    """Raised for malformed command payloads."""


CommandHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class CommandDispatcher:
    """
    Routes command envelopes to engine operations.

    The handler table is checked against CommandType at construction, so
    adding a command type without a handler fails immediately.
    """

    def __init__(
        self,
        sessions: SessionManager,
        interpreter: StrategyInterpreter,
        bridge: BridgeOrchestrator,
        catalog: StrategyCatalog,
        events: EventBus,
        asset_base_url: str,
    ) -> None:
        self._sessions = sessions
        self._interpreter = interpreter
        self._bridge = bridge
        self._catalog = catalog
        self._events = events
        self._asset_base_url = asset_base_url
        self._log = logger.bind(component="command_dispatcher")

        self._handlers: dict[CommandType, CommandHandler] = {
            CommandType.ATTACH_DEBUGGER: self._attach_debugger,
            CommandType.DEBUGGER_COMMAND: self._debugger_command,
            CommandType.EXECUTE_STRATEGY: self._execute_strategy,
            CommandType.EXECUTE_CLINICAL_BRIDGE: self._execute_bridge,
        }
        unhandled = set(CommandType) - set(self._handlers)
        if unhandled:
            raise RuntimeError(f"No handler for command types: {sorted(unhandled)}")

    async def dispatch(self, message: dict[str, Any] | CommandRequest) -> CommandResponse:
        """Handle one command envelope; never raises."""
        try:
            request = (
                message
                if isinstance(message, CommandRequest)
                else CommandRequest.model_validate(message)
            )
        except ValidationError as e:
            return self._failure(f"Invalid command envelope: {e.error_count()} error(s)", report=True)

        try:
            command = CommandType(request.type)
        except ValueError:
            return self._failure(f"Unknown command type: {request.type}", report=True)

        self._log.info("Dispatching command", command=str(command))
        try:
            result = await self._handlers[command](request.payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            return self._failure(f"Invalid {command} payload: {fields}", report=True)
        except StrategyError as e:
            # Strategy runs publish their own ERROR events
            return self._failure(str(e), report=False)
        except Exception as e:
            return self._failure(str(e), report=not self._reported_by_run(command, e))

        return CommandResponse(success=True, result=result)

    def _failure(self, message: str, report: bool) -> CommandResponse:
        self._log.error("Command failed", error=message)
        if report:
            self._events.emit(EventKind.ERROR, message, EventStatus.ERROR)
        return CommandResponse(success=False, error=message)

    @staticmethod
    def _reported_by_run(command: CommandType, error: Exception) -> bool:
        """Whether a strategy run already published an ERROR for this failure."""
        if isinstance(error, (StrategyNotFoundError, InvalidCommandError)):
            return False
        return command in (CommandType.EXECUTE_STRATEGY, CommandType.EXECUTE_CLINICAL_BRIDGE)

    async def _attach_debugger(self, payload: dict[str, Any]) -> None:
        data = AttachPayload.model_validate(payload)
        await self._sessions.attach(data.tab_id)
        return None

    async def _debugger_command(self, payload: dict[str, Any]) -> None:
        data = DebuggerCommandPayload.model_validate(payload)
        match data.command:
            case DebuggerAction.CLICK:
                x, y = data.args.get("x"), data.args.get("y")
                if not isinstance(x, int | float) or not isinstance(y, int | float):
                    raise InvalidCommandError("CLICK requires numeric args.x and args.y")
                await self._sessions.click_at(data.tab_id, x, y)
            case DebuggerAction.TYPE:
                text = data.args.get("text")
                if not isinstance(text, str):
                    raise InvalidCommandError("TYPE requires args.text")
                await self._sessions.insert_text(data.tab_id, text)
        return None

    async def _execute_strategy(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = ExecuteStrategyPayload.model_validate(payload)
        strategy = self._catalog.resolved(data.id, self._asset_base_url)
        return await self._interpreter.execute(strategy, data.input_data, tab_id=data.tab_id)

    async def _execute_bridge(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = BridgePayload.model_validate(payload)
        result = await self._bridge.run(data.tab_id)
        return result.extracted

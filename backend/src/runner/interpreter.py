"""
Strategy interpreter.

Executes a strategy's steps in order against a working tab:
- {{key}} substitution in TYPE text from the run's output map
- Closed dispatch table over StepAction
- CLICK target resolution with vision healing
- Progress events for every state the run reaches
"""

from __future__ import annotations

import asyncio
import re
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from tabflow.cdp.session_manager import SessionManager
from tabflow.cdp.tab_manager import TabManager
from tabflow.dsl.models import Step, StepAction, Strategy
from tabflow.runner.errors import StepValidationError
from tabflow.runner.events import EventBus, EventKind, EventStatus
from tabflow.runner.healing import TargetResolver

logger = structlog.get_logger(__name__)

StepOutcome = str | dict[str, Any] | None

VARIABLE_PATTERN = re.compile(r"\{\{(.*?)\}\}")


def substitute_variables(text: str, context: dict[str, Any]) -> str:
    """
    Replace {{key}} tokens with values from context.

    Keys that are absent, None or the empty string count as unresolved and
    are left as the literal token. Other falsy values such as 0 substitute.
    """

    def replace(match: re.Match[str]) -> str:
        key = match.group(1).strip()
        value = context.get(key)
        if value is None or value == "":
            return match.group(0)
        return str(value)

    return VARIABLE_PATTERN.sub(replace, text)


@dataclass
class RunState:
    """Mutable state of one strategy run."""

    strategy: Strategy
    run_id: str
    events: EventBus
    tab_id: str | None = None
    output: dict[str, Any] = field(default_factory=dict)

    def emit(
        self,
        kind: EventKind,
        message: str,
        status: EventStatus,
        step_id: str | None = None,
    ) -> None:
        self.events.emit(
            kind,
            message,
            status,
            step_id=step_id,
            run_id=self.run_id,
            strategy_id=self.strategy.id,
        )


StepHandler = Callable[[Step, RunState], Awaitable[StepOutcome]]


class StrategyInterpreter:
    """
    Runs strategies step by step.

    Each call to execute() is an independent run with its own output map,
    so concurrent runs never share substitution context. Two concurrent
    runs driving the same tab id is not supported: their commands would
    interleave on that tab.

    Usage:
        interpreter = StrategyInterpreter(sessions, tabs, resolver, events)
        output = await interpreter.execute(strategy, {"nric": "S1234567A"})
    """

    def __init__(
        self,
        sessions: SessionManager,
        tabs: TabManager,
        resolver: TargetResolver,
        events: EventBus,
        step_settle_ms: int = 500,
        default_wait_ms: int = 1000,
    ) -> None:
        self._sessions = sessions
        self._tabs = tabs
        self._resolver = resolver
        self._events = events
        self._step_settle = step_settle_ms / 1000
        self._default_wait_ms = default_wait_ms
        self._log = logger.bind(component="strategy_interpreter")

        self._handlers: dict[StepAction, StepHandler] = {
            StepAction.GOTO: self._goto,
            StepAction.READ: self._read,
            StepAction.CLICK: self._click,
            StepAction.TYPE: self._type,
            StepAction.WAIT: self._wait,
        }
        unhandled = set(StepAction) - set(self._handlers)
        if unhandled:
            raise RuntimeError(f"No handler for actions: {sorted(unhandled)}")

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def healing_stats(self) -> dict[str, Any]:
        return self._resolver.get_healing_stats()

    async def execute(
        self,
        strategy: Strategy,
        input_data: dict[str, Any] | None = None,
        tab_id: str | None = None,
        run_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Run a strategy to completion.

        Args:
            strategy: Strategy to run
            input_data: Initial output map; also the substitution context
            tab_id: Working tab before the first GOTO (e.g. the user's tab)
            run_id: Identifier stamped on every event of this run

        Returns:
            The output map: input_data merged with every READ result

        Raises:
            StrategyError, SessionError: The first failing step's error
        """
        run = RunState(
            strategy=strategy,
            run_id=run_id or uuid.uuid4().hex[:12],
            events=self._events,
            tab_id=tab_id,
            output=dict(input_data or {}),
        )
        log = self._log.bind(strategy_id=strategy.id, run_id=run.run_id)

        log.info("Starting strategy", name=strategy.name, inputs=sorted(run.output))
        run.emit(EventKind.STRATEGY_START, f"Starting Strategy: {strategy.name}", EventStatus.PENDING)

        try:
            for step in strategy.steps:
                await self._run_step(step, run, log)
        except Exception as e:
            log.error("Strategy failed", error=str(e), error_type=type(e).__name__)
            run.emit(EventKind.ERROR, f"Strategy Failed: {e}", EventStatus.ERROR)
            raise

        log.info("Strategy completed", outputs=sorted(run.output))
        run.emit(
            EventKind.STRATEGY_COMPLETE,
            f"Strategy Execution Finished: {strategy.name}",
            EventStatus.SUCCESS,
        )
        return run.output

    def prepare_step(self, step: Step, context: dict[str, Any]) -> Step:
        """Return the step with variables substituted into its text."""
        if step.params.text is None:
            return step
        text = substitute_variables(step.params.text, context)
        if text == step.params.text:
            return step
        return step.model_copy(update={"params": step.params.model_copy(update={"text": text})})

    async def _run_step(self, step: Step, run: RunState, log: Any) -> None:
        step = self.prepare_step(step, run.output)
        log.info("Executing step", step=step.id, action=str(step.action))
        run.emit(
            EventKind.STEP_START,
            f"Executing {step.id} ({step.action})",
            EventStatus.PENDING,
            step_id=step.id,
        )

        handler = self._handlers.get(step.action)
        if handler is None:
            log.warning("Unknown action, skipping", step=step.id, action=str(step.action))
            result: StepOutcome = run.tab_id
        else:
            result = await handler(step, run)

        if isinstance(result, dict):
            run.output.update(result)
        elif isinstance(result, str):
            run.tab_id = result

        run.emit(EventKind.STEP_COMPLETE, f"Completed {step.id}", EventStatus.SUCCESS, step_id=step.id)

        if self._step_settle:
            await asyncio.sleep(self._step_settle)

    def _require_tab(self, step: Step, run: RunState) -> str:
        if not run.tab_id:
            raise StepValidationError(step.id, f"No active tab for {step.action}")
        return run.tab_id

    def _require_params(self, step: Step) -> None:
        missing = step.missing_params()
        if missing:
            raise StepValidationError(step.id, f"{step.action} missing {', '.join(missing)}")

    async def _goto(self, step: Step, run: RunState) -> StepOutcome:
        url = step.params.url
        if not url:
            raise StepValidationError(step.id, f"{step.action} missing url")
        return await self._tabs.create_shadow_tab(url)

    async def _read(self, step: Step, run: RunState) -> StepOutcome:
        tab_id = self._require_tab(step, run)
        selector = step.params.selector
        if not selector:
            raise StepValidationError(step.id, f"{step.action} missing selector")

        value = await self._sessions.read_value(tab_id, selector)
        key = step.output_key
        run.emit(
            EventKind.STEP_COMPLETE,
            f'Extracted {key}: "{value}"',
            EventStatus.SUCCESS,
            step_id=step.id,
        )
        return {key: value}

    async def _click(self, step: Step, run: RunState) -> StepOutcome:
        tab_id = self._require_tab(step, run)
        self._require_params(step)

        def progress(kind: EventKind, message: str, status: EventStatus) -> None:
            run.emit(kind, message, status, step_id=step.id)

        target = await self._resolver.resolve(tab_id, step.params, progress)
        await self._sessions.click_at(tab_id, target.x, target.y)
        return tab_id

    async def _type(self, step: Step, run: RunState) -> StepOutcome:
        tab_id = self._require_tab(step, run)
        text = step.params.text
        if text is None:
            raise StepValidationError(step.id, f"{step.action} missing text")
        await self._sessions.insert_text(tab_id, text)
        return tab_id

    async def _wait(self, step: Step, run: RunState) -> StepOutcome:
        timeout_ms = step.params.timeout if step.params.timeout is not None else self._default_wait_ms
        await asyncio.sleep(timeout_ms / 1000)
        return run.tab_id

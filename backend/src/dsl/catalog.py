"""
Strategy catalog.

Holds the built-in strategies plus any loaded from files, and resolves
extension-relative placeholder URLs into concrete addresses.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import structlog

from tabflow.dsl.models import StepAction, Strategy
from tabflow.dsl.parser import StrategyParser

logger = structlog.get_logger(__name__)

PLACEHOLDER_TOKEN = "__MSG_@@extension_id__/"
PLACEHOLDER_PREFIX = f"chrome-extension://{PLACEHOLDER_TOKEN}"


class StrategyNotFoundError(KeyError):
    """Raised when a strategy id is not in the catalog."""

    def __init__(self, strategy_id: str) -> None:
        self.strategy_id = strategy_id
        super().__init__(strategy_id)

    def __str__(self) -> str:
        return f"Strategy not found: {self.strategy_id}"


BUILTIN_STRATEGIES: list[dict[str, Any]] = [
    {
        "id": "mock-tpa-check",
        "name": "Mock TPA Eligibility Check",
        "description": "Opens Mock TPA, Logs in, and Checks Eligibility key",
        "steps": [
            {"id": "open-tpa", "action": "GOTO", "params": {"url": f"{PLACEHOLDER_PREFIX}mocks/tpa.html"}},
            {"id": "wait-load", "action": "WAIT", "params": {"timeout": 1000}},
            {"id": "click-login", "action": "CLICK", "params": {"x": 220, "y": 350}},
            {"id": "wait-login", "action": "WAIT", "params": {"timeout": 500}},
            {"id": "type-code", "action": "TYPE", "params": {"text": "CL-TEST-001"}},
        ],
    },
    {
        "id": "broken-test",
        "name": "Healing Test (Broken Selector)",
        "description": "Uses wrong selector to force AI Healing",
        "steps": [
            {"id": "open-tpa", "action": "GOTO", "params": {"url": f"{PLACEHOLDER_PREFIX}mocks/tpa.html"}},
            {"id": "wait-load", "action": "WAIT", "params": {"timeout": 1000}},
            {
                "id": "click-login-broken",
                "action": "CLICK",
                "params": {"selector": "#non-existent-id", "description": "Login Button"},
            },
            {"id": "wait-login", "action": "WAIT", "params": {"timeout": 500}},
            {"id": "type-code", "action": "TYPE", "params": {"text": "HEALING-SUCCESS"}},
        ],
    },
    {
        "id": "extract-cms",
        "name": "Extract Patient Data (CMS)",
        "description": "Reads patient Name and NRIC from current CMS page",
        # Runs on the tab the user already has open, so no GOTO
        "steps": [
            {"id": "read-name", "action": "READ", "params": {"selector": "#extracted-name"}},
            {"id": "read-nric", "action": "READ", "params": {"selector": "#extracted-nric"}},
        ],
    },
    {
        "id": "tpa-parallel-1",
        "name": "TPA 1 (Fullerton)",
        "description": "Checks eligibility on Fullerton Health Mock",
        "steps": [
            {
                "id": "open-tpa1",
                "action": "GOTO",
                "params": {"url": f"{PLACEHOLDER_PREFIX}mocks/tpa_fullerton.html"},
            },
            {"id": "wait-load", "action": "WAIT", "params": {"timeout": 1000}},
            {
                "id": "focus-nric-1",
                "action": "CLICK",
                "params": {"selector": "#nricInput", "description": "NRIC Field"},
            },
            {"id": "type-nric-1", "action": "TYPE", "params": {"text": "{{nric}}"}},
            {
                "id": "click-search",
                "action": "CLICK",
                "params": {"selector": ".btn-submit", "description": "Search Database Button"},
            },
        ],
    },
    {
        "id": "tpa-parallel-2",
        "name": "TPA 2 (Doctor Anywhere)",
        "description": "Checks GL Status on DA Mock using extracted NRIC",
        "steps": [
            {
                "id": "open-tpa2",
                "action": "GOTO",
                "params": {"url": f"{PLACEHOLDER_PREFIX}mocks/tpa_da_flow.html"},
            },
            {"id": "wait-load-2", "action": "WAIT", "params": {"timeout": 1000}},
            {
                "id": "focus-nric-2",
                "action": "CLICK",
                "params": {"selector": "#nric-input", "description": "NRIC Field"},
            },
            {"id": "type-nric-2", "action": "TYPE", "params": {"text": "{{nric}}"}},
            {
                "id": "check-status",
                "action": "CLICK",
                "params": {"selector": "#verify-btn", "description": "Verify Button"},
            },
        ],
    },
    {
        "id": "live-web-demo",
        "name": "Live Web Demo (HerokuApp)",
        "description": "Demonstrates automation on a real public website (the-internet.herokuapp.com)",
        "steps": [
            {"id": "open-live", "action": "GOTO", "params": {"url": "https://the-internet.herokuapp.com/login"}},
            {"id": "wait-live", "action": "WAIT", "params": {"timeout": 2000}},
            {
                "id": "click-user",
                "action": "CLICK",
                "params": {"selector": "#username", "description": "Username Field"},
            },
            {"id": "type-user", "action": "TYPE", "params": {"text": "tomsmith"}},
            {
                "id": "click-pass",
                "action": "CLICK",
                "params": {"selector": "#password", "description": "Password Field"},
            },
            {"id": "type-pass", "action": "TYPE", "params": {"text": "SuperSecretPassword!"}},
            {
                "id": "submit-login",
                "action": "CLICK",
                "params": {"selector": 'button[type="submit"]', "description": "Login Button"},
            },
        ],
    },
]


def resolve_url(url: str, base_url: str) -> str:
    """Rewrite a placeholder URL against base_url; other URLs pass through."""
    if PLACEHOLDER_TOKEN not in url:
        return url
    relative_path = url.split(PLACEHOLDER_TOKEN, 1)[1]
    return f"{base_url.rstrip('/')}/{relative_path.lstrip('/')}"


def resolve_placeholders(strategy: Strategy, base_url: str) -> Strategy:
    """
    Return a copy of strategy with every placeholder GOTO url made concrete.

    The input strategy is never modified.
    """
    steps = []
    for step in strategy.steps:
        if step.action == StepAction.GOTO and step.params.url:
            resolved = resolve_url(step.params.url, base_url)
            if resolved != step.params.url:
                step = step.model_copy(
                    update={"params": step.params.model_copy(update={"url": resolved})}
                )
        steps.append(step)
    return strategy.model_copy(update={"steps": steps})


class StrategyCatalog:
    """
    Strategies addressable by id.

    Usage:
        catalog = StrategyCatalog()
        catalog.load_files(["extra.yaml"])
        strategy = catalog.get("extract-cms")
    """

    def __init__(self, strategies: Iterable[Strategy] | None = None) -> None:
        self._strategies: dict[str, Strategy] = {}
        self._log = logger.bind(component="strategy_catalog")

        source = strategies if strategies is not None else builtin_strategies()
        for strategy in source:
            self.register(strategy)

    def register(self, strategy: Strategy) -> None:
        """Add a strategy, replacing any with the same id."""
        if strategy.id in self._strategies:
            self._log.info("Overriding strategy", strategy_id=strategy.id)
        self._strategies[strategy.id] = strategy

    def get(self, strategy_id: str) -> Strategy:
        try:
            return self._strategies[strategy_id]
        except KeyError:
            raise StrategyNotFoundError(strategy_id) from None

    def resolved(self, strategy_id: str, base_url: str) -> Strategy:
        """Fetch a strategy with its placeholder URLs resolved."""
        return resolve_placeholders(self.get(strategy_id), base_url)

    def strategies(self) -> list[Strategy]:
        return list(self._strategies.values())

    def load_files(self, paths: Iterable[str | Path], parser: StrategyParser | None = None) -> int:
        """
        Merge strategies from files over the current entries.

        Directories are scanned for .yaml/.yml/.json files.

        Returns:
            Number of strategies loaded
        """
        parser = parser or StrategyParser()
        count = 0
        for path in paths:
            path = Path(path)
            loaded = parser.parse_directory(path) if path.is_dir() else parser.parse_file(path)
            for strategy in loaded:
                self.register(strategy)
            count += len(loaded)
        self._log.info("Loaded strategy files", count=count, total=len(self._strategies))
        return count

    def __contains__(self, strategy_id: object) -> bool:
        return strategy_id in self._strategies

    def __iter__(self) -> Iterator[Strategy]:
        return iter(self._strategies.values())

    def __len__(self) -> int:
        return len(self._strategies)


def builtin_strategies() -> list[Strategy]:
    return [Strategy.model_validate(data) for data in BUILTIN_STRATEGIES]

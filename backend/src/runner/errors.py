"""Errors that fail a strategy run."""

from __future__ import annotations


class StrategyError(Exception):
    """Base exception for strategy run failures."""

    pass


class StepValidationError(StrategyError):
    """Raised when a step lacks a parameter or precondition its action needs."""

    def __init__(self, step_id: str, message: str) -> None:
        self.step_id = step_id
        super().__init__(f"Step '{step_id}': {message}")


class HealingFailedError(StrategyError):
    """Raised when a click target could be found neither by selector nor by vision."""

    def __init__(self, selector: str, reason: str) -> None:
        self.selector = selector
        self.reason = reason
        super().__init__(f"Selector '{selector}' not found and vision fallback failed: {reason}")

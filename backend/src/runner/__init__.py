"""
Strategy runner.

Executes strategies against browser tabs with:
- Variable substitution from the run's output map
- Selector-first click resolution with vision healing
- Progress events delivered through an EventBus
"""

from tabflow.runner.errors import HealingFailedError, StepValidationError, StrategyError
from tabflow.runner.events import (
    EventBus,
    EventKind,
    EventStatus,
    EventSubscription,
    StrategyEvent,
)
from tabflow.runner.healing import HealingResult, TargetResolver
from tabflow.runner.interpreter import StrategyInterpreter, substitute_variables

__all__ = [
    # Interpreter
    "StrategyInterpreter",
    "substitute_variables",
    # Healing
    "TargetResolver",
    "HealingResult",
    # Events
    "EventBus",
    "EventKind",
    "EventStatus",
    "EventSubscription",
    "StrategyEvent",
    # Errors
    "StrategyError",
    "StepValidationError",
    "HealingFailedError",
]

"""
Strategy definitions.

Provides the strategy data model, file parsing, and the built-in catalog
with placeholder URL resolution.
"""

from tabflow.dsl.catalog import (
    PLACEHOLDER_PREFIX,
    StrategyCatalog,
    StrategyNotFoundError,
    builtin_strategies,
    resolve_placeholders,
    resolve_url,
)
from tabflow.dsl.models import Step, StepAction, StepParams, Strategy
from tabflow.dsl.parser import StrategyParseError, StrategyParser

__all__ = [
    # Models
    "Step",
    "StepAction",
    "StepParams",
    "Strategy",
    # Parser
    "StrategyParseError",
    "StrategyParser",
    # Catalog
    "PLACEHOLDER_PREFIX",
    "StrategyCatalog",
    "StrategyNotFoundError",
    "builtin_strategies",
    "resolve_placeholders",
    "resolve_url",
]

"""
tabflow browser automation engine.

Drives browser tabs over the DevTools protocol with declarative strategies,
falling back to a vision model when a CSS selector no longer matches.
"""

__version__ = "0.4.0"

from tabflow.cdp import (
    CDPConnection,
    Coordinates,
    SessionManager,
    TabManager,
    TabRegistry,
)
from tabflow.config import EngineConfig, VisionBackend, load_engine_config
from tabflow.dsl import Step, StepAction, Strategy, StrategyCatalog, StrategyParser
from tabflow.runner import EventBus, EventKind, EventStatus, StrategyEvent, StrategyInterpreter
from tabflow.vision import LLMVisionLocator, SimulatedVisionLocator, VisionLocator

__all__ = [
    "__version__",
    "CDPConnection",
    "Coordinates",
    "EngineConfig",
    "EventBus",
    "EventKind",
    "EventStatus",
    "LLMVisionLocator",
    "SessionManager",
    "SimulatedVisionLocator",
    "Step",
    "StepAction",
    "Strategy",
    "StrategyCatalog",
    "StrategyEvent",
    "StrategyInterpreter",
    "StrategyParser",
    "TabManager",
    "TabRegistry",
    "VisionBackend",
    "VisionLocator",
    "load_engine_config",
]

"""Vision fallback for click targets whose selectors no longer match."""

from tabflow.vision.locator import (
    LLMVisionLocator,
    SimulatedVisionLocator,
    VisionLocator,
    parse_coordinates,
)

__all__ = [
    "VisionLocator",
    "SimulatedVisionLocator",
    "LLMVisionLocator",
    "parse_coordinates",
]

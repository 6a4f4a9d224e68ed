"""
Strategy orchestration.

Provides the bridge flow: extraction on the user's tab followed by
concurrent verification runs seeded with the extracted context.
"""

from tabflow.orchestrator.bridge import (
    BridgeOrchestrator,
    BridgeResult,
    MissingExtractedFieldError,
)

__all__ = [
    "BridgeOrchestrator",
    "BridgeResult",
    "MissingExtractedFieldError",
]

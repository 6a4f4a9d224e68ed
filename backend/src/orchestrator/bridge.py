"""
Bridge orchestration.

Composes strategy runs: one extraction run on the user's tab produces a
shared context, then several verification runs consume it concurrently,
each in its own shadow tabs.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from tabflow.dsl.catalog import StrategyCatalog, resolve_placeholders
from tabflow.runner.errors import StrategyError
from tabflow.runner.events import EventKind, EventStatus
from tabflow.runner.interpreter import StrategyInterpreter

logger = structlog.get_logger(__name__)

DEFAULT_EXTRACTION = "extract-cms"
DEFAULT_VERIFICATIONS = ("tpa-parallel-1", "tpa-parallel-2")
DEFAULT_REQUIRED_FIELDS = ("name", "nric")


class MissingExtractedFieldError(StrategyError):
    """Raised when the extraction run did not produce every required field."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Failed to extract required fields: {', '.join(self.missing)}")


@dataclass
class BridgeResult:
    """Outcome of a successful bridge run."""

    bridge_id: str
    extracted: dict[str, Any]
    verifications: dict[str, dict[str, Any]] = field(default_factory=dict)


class BridgeOrchestrator:
    """
    Sequential-then-parallel composition of strategy runs.

    Usage:
        bridge = BridgeOrchestrator(interpreter, catalog, asset_base_url)
        result = await bridge.run(active_tab_id)
    """

    def __init__(
        self,
        interpreter: StrategyInterpreter,
        catalog: StrategyCatalog,
        asset_base_url: str,
        extraction_id: str = DEFAULT_EXTRACTION,
        verification_ids: Sequence[str] = DEFAULT_VERIFICATIONS,
        required_fields: Sequence[str] = DEFAULT_REQUIRED_FIELDS,
    ) -> None:
        self._interpreter = interpreter
        self._catalog = catalog
        self._asset_base_url = asset_base_url
        self._extraction_id = extraction_id
        self._verification_ids = tuple(verification_ids)
        self._required_fields = tuple(required_fields)
        self._log = logger.bind(component="bridge")

    async def run(self, tab_id: str) -> BridgeResult:
        """
        Extract from tab_id, then run every verification concurrently.

        Every verification runs to completion; the first failure in
        declaration order is then raised.

        Raises:
            MissingExtractedFieldError: A required field is missing or empty
            StrategyNotFoundError: A configured strategy id is not in the catalog
            StrategyError, SessionError: A run failed
        """
        bridge_id = uuid.uuid4().hex[:12]
        log = self._log.bind(bridge_id=bridge_id)

        extraction = self._catalog.get(self._extraction_id)
        verifications = [
            resolve_placeholders(self._catalog.get(strategy_id), self._asset_base_url)
            for strategy_id in self._verification_ids
        ]

        log.info("Extracting context", strategy_id=extraction.id, tab_id=tab_id)
        extracted = await self._interpreter.execute(
            extraction,
            tab_id=tab_id,
            run_id=f"{bridge_id}-extract",
        )
        self._check_required(extracted, bridge_id)

        log.info("Running verifications", strategy_ids=[s.id for s in verifications])
        results = await asyncio.gather(
            *(
                self._interpreter.execute(
                    strategy,
                    dict(extracted),
                    run_id=f"{bridge_id}-{index}",
                )
                for index, strategy in enumerate(verifications, start=1)
            ),
            return_exceptions=True,
        )

        failures = [
            (strategy.id, result)
            for strategy, result in zip(verifications, results, strict=True)
            if isinstance(result, BaseException)
        ]
        if failures:
            for strategy_id, error in failures:
                log.error("Verification failed", strategy_id=strategy_id, error=str(error))
            raise failures[0][1]

        log.info("Bridge completed", fields=sorted(extracted))
        return BridgeResult(
            bridge_id=bridge_id,
            extracted=extracted,
            verifications={
                strategy.id: result
                for strategy, result in zip(verifications, results, strict=True)
            },
        )

    def _check_required(self, extracted: dict[str, Any], bridge_id: str) -> None:
        missing = [name for name in self._required_fields if not extracted.get(name)]
        if not missing:
            return

        error = MissingExtractedFieldError(missing)
        self._log.error("Extraction incomplete", bridge_id=bridge_id, missing=missing)
        self._interpreter.events.emit(
            EventKind.ERROR,
            f"Bridge Failed: {error}",
            EventStatus.ERROR,
            run_id=f"{bridge_id}-extract",
            strategy_id=self._extraction_id,
        )
        raise error

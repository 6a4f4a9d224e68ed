"""
Strategy file parser.

Loads strategies from YAML or JSON. A file holds either a single strategy
mapping or a mapping with a "strategies" list.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from tabflow.dsl.models import Strategy

logger = structlog.get_logger(__name__)


class StrategyParseError(Exception):
    """Raised when a strategy file cannot be parsed or validated."""

    def __init__(self, message: str, line: int | None = None, column: int | None = None) -> None:
        self.line = line
        self.column = column
        location = ""
        if line is not None:
            location = f" at line {line}"
            if column is not None:
                location += f", column {column}"
        super().__init__(f"{message}{location}")


class StrategyParser:
    """
    Parser for strategy definition files.

    With strict=True, steps missing parameters their action requires are
    rejected at parse time instead of failing when they run.
    """

    SUFFIXES = (".yaml", ".yml", ".json")

    def __init__(self, strict: bool = False) -> None:
        self._strict = strict
        self._log = logger.bind(component="strategy_parser")

    def parse_file(self, path: str | Path) -> list[Strategy]:
        """Parse a strategy file."""
        file_path = Path(path)
        if not file_path.exists():
            raise StrategyParseError(f"File not found: {file_path}")
        if not file_path.is_file():
            raise StrategyParseError(f"Path is not a file: {file_path}")

        self._log.info("Parsing strategy file", path=str(file_path))
        content = file_path.read_text(encoding="utf-8")
        return self.parse_string(content, source_file=str(file_path))

    def parse_string(self, content: str, source_file: str | None = None) -> list[Strategy]:
        """Parse YAML (or JSON, which is valid YAML) content."""
        try:
            raw_data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            if mark:
                raise StrategyParseError(str(e), line=mark.line + 1, column=mark.column + 1) from e
            raise StrategyParseError(f"Invalid YAML: {e}") from e

        if not isinstance(raw_data, dict):
            raise StrategyParseError("Strategy file root must be a mapping")

        entries = raw_data["strategies"] if "strategies" in raw_data else [raw_data]
        if not isinstance(entries, list) or not entries:
            raise StrategyParseError("'strategies' must be a non-empty list")

        strategies = [self._validate(entry, index) for index, entry in enumerate(entries)]

        ids = [s.id for s in strategies]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise StrategyParseError(f"Duplicate strategy ids: {', '.join(duplicates)}")

        self._log.info(
            "Parsed strategies",
            source=source_file,
            count=len(strategies),
            ids=ids,
        )
        return strategies

    def parse_directory(self, directory: str | Path, recursive: bool = True) -> list[Strategy]:
        """Parse every strategy file under a directory."""
        dir_path = Path(directory)
        if not dir_path.is_dir():
            raise StrategyParseError(f"Directory not found: {dir_path}")

        glob_method = dir_path.rglob if recursive else dir_path.glob
        results: list[Strategy] = []
        for file_path in sorted(glob_method("*")):
            if file_path.suffix not in self.SUFFIXES or file_path.name.startswith("."):
                continue
            results.extend(self.parse_file(file_path))
        return results

    def _validate(self, entry: Any, index: int) -> Strategy:
        if not isinstance(entry, dict):
            raise StrategyParseError(f"Strategy #{index} must be a mapping")

        try:
            strategy = Strategy.model_validate(entry)
        except ValidationError as e:
            error_messages = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                error_messages.append(f"  {loc}: {error['msg']}")
            label = entry.get("id", f"#{index}")
            raise StrategyParseError(
                f"Strategy {label} failed validation:\n" + "\n".join(error_messages)
            ) from e

        if self._strict:
            incomplete = strategy.incomplete_steps()
            if incomplete:
                details = "\n".join(
                    f"  {step_id}: missing {', '.join(missing)}"
                    for step_id, missing in incomplete.items()
                )
                raise StrategyParseError(f"Strategy {strategy.id} has incomplete steps:\n{details}")

        return strategy

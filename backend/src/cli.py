"""
Command-line interface for tabflow.

Provides commands for listing and validating strategies, running them
against a connected browser, and starting the API server.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import structlog

from tabflow import __version__
from tabflow.config import EngineConfig, load_engine_config
from tabflow.dsl.catalog import StrategyCatalog
from tabflow.dsl.parser import StrategyParseError, StrategyParser
from tabflow.orchestrator.bridge import BridgeResult
from tabflow.runner.events import StrategyEvent

logger = structlog.get_logger(__name__)


def main() -> int:
    """Main entry point for CLI."""
    from dotenv import load_dotenv

    load_dotenv()

    parser = create_parser()
    args = parser.parse_args()

    configure_logging(args.verbose if hasattr(args, "verbose") else False)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        logger.error("Command failed", error=str(e))
        if hasattr(args, "verbose") and args.verbose:
            raise
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="tabflow",
        description="tabflow - browser automation strategies over the DevTools protocol",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"tabflow {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    list_parser = subparsers.add_parser("list", help="List catalog strategies")
    list_parser.add_argument(
        "--strategies",
        action="append",
        default=[],
        metavar="PATH",
        help="Extra strategy file or directory (can be repeated)",
    )
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the catalog as JSON",
    )
    list_parser.set_defaults(func=cmd_list)

    validate_parser = subparsers.add_parser("validate", help="Validate strategy files")
    validate_parser.add_argument("paths", nargs="+", help="Strategy files or directories")
    validate_parser.add_argument(
        "--strict",
        action="store_true",
        help="Reject steps missing the parameters their action needs",
    )
    validate_parser.set_defaults(func=cmd_validate)

    run_parser = subparsers.add_parser("run", help="Run a strategy against the browser")
    run_parser.add_argument("strategy_id", help="Catalog id of the strategy")
    run_parser.add_argument(
        "--tab",
        dest="tab_id",
        help="Tab to run on (steps before the first GOTO need it)",
    )
    run_parser.add_argument(
        "--var",
        action="append",
        default=[],
        dest="variables",
        metavar="KEY=VALUE",
        help="Seed the run's context (can be repeated)",
    )
    run_parser.add_argument(
        "--strategies",
        action="append",
        default=[],
        metavar="PATH",
        help="Extra strategy file or directory (can be repeated)",
    )
    run_parser.set_defaults(func=cmd_run)

    bridge_parser = subparsers.add_parser(
        "bridge",
        help="Extract from a tab and run the verification strategies",
    )
    bridge_parser.add_argument("--tab", dest="tab_id", required=True, help="Tab to extract from")
    bridge_parser.set_defaults(func=cmd_bridge)

    server_parser = subparsers.add_parser("server", help="Start API server")
    server_parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Server host",
    )
    server_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Server port",
    )
    server_parser.set_defaults(func=cmd_server)

    return parser


def configure_logging(verbose: bool) -> None:
    """Configure structured logging."""
    level = "DEBUG" if verbose else "INFO"
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if verbose else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    import logging

    logging.basicConfig(level=getattr(logging, level))


def parse_variables(pairs: list[str]) -> dict[str, str]:
    """Turn KEY=VALUE arguments into a context map; malformed pairs are skipped."""
    variables: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            print(f"Warning: Ignoring variable without '=': {pair}", file=sys.stderr)
            continue
        key, value = pair.split("=", 1)
        variables[key.strip()] = value
    return variables


def print_event(event: StrategyEvent) -> None:
    step = f" [{event.step_id}]" if event.step_id else ""
    print(f"{event.status.upper():8} {event.kind}{step}: {event.message}")


def cmd_list(args: argparse.Namespace) -> int:
    """List catalog strategies."""
    catalog = StrategyCatalog()
    if args.strategies:
        catalog.load_files(args.strategies)

    if args.json:
        print(json.dumps([s.model_dump(mode="json") for s in catalog], indent=2))
        return 0

    for strategy in catalog:
        print(f"{strategy.id:24} {strategy.name} ({len(strategy.steps)} steps)")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate strategy files."""
    parser = StrategyParser(strict=args.strict)
    errors = 0

    for path_str in args.paths:
        path = Path(path_str)

        if not path.exists():
            print(f"Error: Path not found: {path}", file=sys.stderr)
            errors += 1
            continue

        try:
            if path.is_dir():
                strategies = parser.parse_directory(path)
            else:
                strategies = parser.parse_file(path)
        except StrategyParseError as e:
            print(f"Invalid: {path}", file=sys.stderr)
            print(f"  {e}", file=sys.stderr)
            errors += 1
            continue

        names = ", ".join(s.id for s in strategies)
        print(f"Valid: {path} ({len(strategies)} strategies: {names})")

    if errors:
        print(f"\n{errors} path(s) with errors", file=sys.stderr)
        return 1

    print("\nAll files valid")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Run one strategy and print its output map."""
    config = load_engine_config()
    if args.strategies:
        config = config.with_overrides(strategy_paths=[*config.strategy_paths, *args.strategies])
    output = asyncio.run(_run_strategy(config, args.strategy_id, parse_variables(args.variables), args.tab_id))
    print(json.dumps(output, indent=2, default=str))
    return 0


def cmd_bridge(args: argparse.Namespace) -> int:
    """Run the bridge flow on a tab."""
    result = asyncio.run(_run_bridge(load_engine_config(), args.tab_id))
    print(json.dumps(
        {
            "bridge_id": result.bridge_id,
            "extracted": result.extracted,
            "verifications": result.verifications,
        },
        indent=2,
        default=str,
    ))
    return 0


async def _run_strategy(
    config: EngineConfig,
    strategy_id: str,
    variables: dict[str, str],
    tab_id: str | None,
) -> dict[str, Any]:
    from tabflow.engine import Engine

    engine = await Engine.create(config)
    remove = engine.events.add_listener(print_event)
    try:
        strategy = engine.catalog.resolved(strategy_id, config.asset_base_url)
        return await engine.interpreter.execute(strategy, variables, tab_id=tab_id)
    finally:
        remove()
        await engine.close()


async def _run_bridge(config: EngineConfig, tab_id: str) -> BridgeResult:
    from tabflow.engine import Engine

    engine = await Engine.create(config)
    remove = engine.events.add_listener(print_event)
    try:
        return await engine.bridge.run(tab_id)
    finally:
        remove()
        await engine.close()


def cmd_server(args: argparse.Namespace) -> int:
    """Start API server."""
    from tabflow.api.main import run_server

    print(f"Starting tabflow API server on {args.host}:{args.port}")
    run_server(host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Engine assembly.

Builds every component exactly once and hands each its collaborators:
connection -> registry -> session/tab managers -> vision locator ->
event bus -> catalog -> interpreter -> bridge -> command dispatcher.
"""

from __future__ import annotations

import structlog

from tabflow.api.commands import CommandDispatcher
from tabflow.cdp.connection import CDPConnection, discover_browser_endpoint
from tabflow.cdp.registry import TabRegistry
from tabflow.cdp.session_manager import SessionManager
from tabflow.cdp.tab_manager import TabManager
from tabflow.config import EngineConfig, VisionBackend
from tabflow.dsl.catalog import StrategyCatalog
from tabflow.llm.client import LLMClient
from tabflow.llm.config import LLMConfig, load_llm_config
from tabflow.orchestrator.bridge import BridgeOrchestrator
from tabflow.runner.events import EventBus
from tabflow.runner.healing import TargetResolver
from tabflow.runner.interpreter import StrategyInterpreter
from tabflow.vision.locator import LLMVisionLocator, SimulatedVisionLocator, VisionLocator

logger = structlog.get_logger(__name__)


class Engine:
    """
    The assembled automation engine.

    Usage:
        engine = await Engine.create(load_engine_config())
        try:
            output = await engine.interpreter.execute(engine.catalog.get("live-web-demo"))
        finally:
            await engine.close()
    """

    def __init__(
        self,
        config: EngineConfig,
        connection: CDPConnection,
        vision: VisionLocator,
        catalog: StrategyCatalog | None = None,
        llm_client: LLMClient | None = None,
    ) -> None:
        self.config = config
        self.connection = connection
        self.registry = TabRegistry()
        self.sessions = SessionManager(connection, self.registry, config.command_timeout_seconds)
        self.tabs = TabManager(connection, self.sessions)
        self.vision = vision
        self.events = EventBus(config.event_queue_size)
        self.catalog = catalog if catalog is not None else StrategyCatalog()
        self.resolver = TargetResolver(self.sessions, vision)
        self.interpreter = StrategyInterpreter(
            self.sessions,
            self.tabs,
            self.resolver,
            self.events,
            step_settle_ms=config.step_settle_ms,
            default_wait_ms=config.default_wait_ms,
        )
        self.bridge = BridgeOrchestrator(self.interpreter, self.catalog, config.asset_base_url)
        self.dispatcher = CommandDispatcher(
            sessions=self.sessions,
            interpreter=self.interpreter,
            bridge=self.bridge,
            catalog=self.catalog,
            events=self.events,
            asset_base_url=config.asset_base_url,
        )
        self._llm_client = llm_client
        self._log = logger.bind(component="engine")

    @classmethod
    async def create(
        cls,
        config: EngineConfig,
        llm_config: LLMConfig | None = None,
    ) -> Engine:
        """
        Connect to the browser and assemble the engine.

        Raises:
            CDPConnectionError: The browser endpoint is unreachable
            StrategyParseError: A configured strategy file is invalid
        """
        catalog = StrategyCatalog()
        if config.strategy_paths:
            catalog.load_files(config.strategy_paths)

        ws_url = config.cdp_ws_url or await discover_browser_endpoint(
            config.http_endpoint,
            expected_protocol=config.protocol_version,
        )
        connection = CDPConnection(ws_url)
        await connection.connect()
        try:
            await connection.send("Target.setDiscoverTargets", {"discover": True})
        except Exception:
            await connection.close()
            raise

        llm_client, vision = build_vision_locator(config, llm_config)
        engine = cls(config, connection, vision, catalog=catalog, llm_client=llm_client)
        engine._log.info(
            "Engine ready",
            vision_backend=str(config.vision_backend),
            strategies=len(catalog),
        )
        return engine

    async def close(self) -> None:
        """Close shadow tabs, detach sessions and drop the connection."""
        self._log.info("Shutting down engine")
        if self.connection.is_connected:
            await self.tabs.close_all()
            await self.sessions.detach_all()
        await self.connection.close()
        if self._llm_client is not None:
            await self._llm_client.close()


def build_vision_locator(
    config: EngineConfig,
    llm_config: LLMConfig | None = None,
) -> tuple[LLMClient | None, VisionLocator]:
    """
    Construct the configured vision locator.

    The llm backend also requires TABFLOW_LLM_ENABLED; otherwise the
    simulated locator is used and a warning is logged.

    Returns:
        The LLM client the locator owns (None for the simulated one) and the locator
    """
    if config.vision_backend == VisionBackend.LLM:
        llm_config = llm_config or load_llm_config()
        if llm_config.enabled:
            client = LLMClient(llm_config.endpoint)
            return client, LLMVisionLocator(client, llm_config.vision)
        logger.warning("LLM vision backend selected but LLM is disabled, using simulated locator")

    return None, SimulatedVisionLocator(delay_ms=config.vision_delay_ms)

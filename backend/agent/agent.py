"""Agent factory.

Wires the tool registry, the market data provider, the system prompt and a
model gateway into an Orchestrator ready to serve turns.
"""

import random

import structlog

from backend.agent.orchestrator import Orchestrator
from backend.agent.prompts import build_system_prompt
from backend.agent.registry import ToolRegistry
from backend.agent.tools import RngFactory, register_financial_tools
from backend.core.config import Settings
from backend.core.llm_adapter import ModelGateway
from backend.data.market_data import MarketDataProvider, MockMarketData

logger = structlog.get_logger(__name__)


def build_registry(
    provider: MarketDataProvider | None = None,
    rng_factory: RngFactory = random.Random,
) -> ToolRegistry:
    """Create a registry holding the financial tools.

    Args:
        provider: Market data source. Defaults to the mock tables.
        rng_factory: Per-call random source for simulated price changes.
    """
    return register_financial_tools(ToolRegistry(), provider or MockMarketData(), rng_factory)


def create_agent(gateway: ModelGateway, registry: ToolRegistry, settings: Settings) -> Orchestrator:
    """Build the orchestrator.

    Args:
        gateway: Model backend.
        registry: Fully populated tool registry (no registration after this point).
        settings: Iteration bound and per-call timeout.

    Returns:
        Orchestrator shared by all chat turns.
    """
    orchestrator = Orchestrator(
        gateway=gateway,
        registry=registry,
        system_prompt=build_system_prompt(registry.names()),
        max_tool_iterations=settings.max_tool_iterations,
        timeout=settings.llm_timeout,
    )
    logger.info("agent.created", gateway=gateway.name, tools=registry.names(),
                max_tool_iterations=settings.max_tool_iterations)
    return orchestrator

"""Shared fixtures for all tests."""

import random

import pytest

from backend.agent.agent import build_registry
from backend.agent.orchestrator import Orchestrator
from backend.agent.prompts import build_system_prompt
from backend.core.config import Settings
from backend.core.conversation import ToolCallRequest
from backend.core.llm_adapter import FinalAnswer, ModelGateway, ToolCallsRequested
from backend.data.market_data import MockMarketData


class ScriptedGateway(ModelGateway):
    """Model gateway stub that replays scripted outcomes.

    Outcomes are returned in order; the last one repeats once the script runs
    out. If ``error`` is set it is raised on every call instead.
    """

    name = "scripted"

    def __init__(self, outcomes=None, error=None):
        self.outcomes = list(outcomes or [FinalAnswer("ok")])
        self.error = error
        self.calls = []
        self.catalogs = []
        self.timeouts = []

    async def complete(self, conversation, tool_catalog, timeout):
        self.calls.append(conversation.messages)
        self.catalogs.append(tuple(tool_catalog))
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]


def tool_call(name: str, call_id: str = "call_1", **arguments) -> ToolCallsRequested:
    """Outcome requesting a single tool call."""
    return ToolCallsRequested(calls=(ToolCallRequest(id=call_id, name=name, arguments=arguments),))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        cerebras_api_key="test-cerebras-key",
        groq_api_key="test-groq-key",
        llm_timeout=5.0,
        max_tool_iterations=5,
    )


@pytest.fixture
def market_data() -> MockMarketData:
    return MockMarketData()


@pytest.fixture
def seeded_rng_factory():
    """Each call yields a fresh Random seeded identically, so price changes are reproducible."""
    return lambda: random.Random(42)


@pytest.fixture
def registry(market_data, seeded_rng_factory):
    return build_registry(market_data, seeded_rng_factory)


@pytest.fixture
def make_orchestrator(registry):
    """Factory: orchestrator over the financial registry and a given gateway."""

    def _make(gateway, max_tool_iterations: int = 5, timeout: float = 5.0) -> Orchestrator:
        return Orchestrator(
            gateway=gateway,
            registry=registry,
            system_prompt=build_system_prompt(registry.names()),
            max_tool_iterations=max_tool_iterations,
            timeout=timeout,
        )

    return _make


@pytest.fixture
def scripted_gateway():
    """The ScriptedGateway class, for tests that build their own script."""
    return ScriptedGateway


@pytest.fixture
def request_tool():
    """The tool_call helper, building a ToolCallsRequested outcome."""
    return tool_call

"""Unit tests for the orchestration loop, driven by a scripted gateway."""

import json

import pytest

from backend.agent.orchestrator import ToolLoopExceededError, TurnState, render_tool_output
from backend.core.conversation import Message, Role
from backend.core.llm_adapter import (
    BackendProtocolError,
    BackendUnavailableError,
    FinalAnswer,
)


@pytest.mark.asyncio
class TestFinalAnswer:

    async def test_direct_answer(self, make_orchestrator, scripted_gateway):
        gateway = scripted_gateway([FinalAnswer("Hello there")])
        result = await make_orchestrator(gateway).run("hi")

        assert result.text == "Hello there"
        assert result.state is TurnState.DONE
        assert result.iterations == 1
        assert result.tools_called == []

    async def test_conversation_shape(self, make_orchestrator, scripted_gateway):
        gateway = scripted_gateway([FinalAnswer("done")])
        result = await make_orchestrator(gateway).run("What is AAPL?")

        sent = gateway.calls[0]
        assert [m.role for m in sent] == [Role.SYSTEM, Role.USER]
        assert "financial assistant" in sent[0].content
        assert sent[1].content == "What is AAPL?"
        assert result.conversation[-1] == Message.assistant("done")

    async def test_history_inserted_before_query(self, make_orchestrator, scripted_gateway):
        gateway = scripted_gateway([FinalAnswer("ok")])
        history = [Message.user("earlier"), Message.assistant("reply")]
        await make_orchestrator(gateway).run("now", history=history)

        assert [m.content for m in gateway.calls[0][1:]] == ["earlier", "reply", "now"]

    async def test_empty_answer_replaced(self, make_orchestrator, scripted_gateway):
        gateway = scripted_gateway([FinalAnswer("   ")])
        result = await make_orchestrator(gateway).run("hi")
        assert result.text == "No response generated."

    async def test_catalog_and_timeout_passed(self, make_orchestrator, scripted_gateway, registry):
        gateway = scripted_gateway([FinalAnswer("ok")])
        await make_orchestrator(gateway, timeout=2.5).run("hi")
        assert gateway.catalogs[0] == registry.describe_all()
        assert gateway.timeouts == [2.5]

    async def test_timeout_override(self, make_orchestrator, scripted_gateway):
        gateway = scripted_gateway([FinalAnswer("ok")])
        await make_orchestrator(gateway).run("hi", timeout=0.5)
        assert gateway.timeouts == [0.5]


@pytest.mark.asyncio
class TestToolDispatch:

    async def test_tool_result_fed_back(self, make_orchestrator, scripted_gateway, request_tool):
        gateway = scripted_gateway([
            request_tool("convert_currency", amount=1000, from_currency="USD", to_currency="EUR"),
            FinalAnswer("1000 USD is 850.00 EUR"),
        ])
        result = await make_orchestrator(gateway).run("Convert 1000 USD to EUR")

        assert result.text == "1000 USD is 850.00 EUR"
        assert result.tools_called == ["convert_currency"]
        assert result.iterations == 2

        second_call = gateway.calls[1]
        assistant, tool_msg = second_call[-2], second_call[-1]
        assert assistant.role is Role.ASSISTANT
        assert assistant.tool_calls[0].name == "convert_currency"
        assert tool_msg.role is Role.TOOL
        assert tool_msg.tool_call_id == "call_1"
        assert json.loads(tool_msg.content)["converted_amount"] == 850.0

    async def test_every_call_in_batch_resolved(self, make_orchestrator, scripted_gateway, request_tool):
        batch = request_tool("get_stock_price", call_id="a", symbol="AAPL")
        batch = type(batch)(calls=batch.calls + request_tool("get_market_summary", call_id="b").calls)
        gateway = scripted_gateway([batch, FinalAnswer("summary")])

        result = await make_orchestrator(gateway).run("prices?")

        tool_ids = [m.tool_call_id for m in result.conversation if m.role is Role.TOOL]
        assert tool_ids == ["a", "b"]
        assert result.tools_called == ["get_stock_price", "get_market_summary"]

    async def test_tool_error_becomes_result_text(self, make_orchestrator, scripted_gateway, request_tool):
        gateway = scripted_gateway([
            request_tool("get_stock_price", symbol="ZZZZ"),
            FinalAnswer("Unknown symbol"),
        ])
        result = await make_orchestrator(gateway).run("ZZZZ price")

        tool_msg = gateway.calls[1][-1]
        assert tool_msg.content.startswith("ERROR:")
        assert "AAPL" in tool_msg.content
        assert result.state is TurnState.DONE

    @pytest.mark.parametrize("name, args", [
        ("no_such_tool", {}),
        ("calculate_compound_interest", {"principal": 100}),
        ("convert_currency", {"amount": "lots", "from_currency": "USD", "to_currency": "EUR"}),
    ])
    async def test_dispatch_failures_do_not_abort(self, make_orchestrator, scripted_gateway,
                                                  request_tool, name, args):
        gateway = scripted_gateway([request_tool(name, **args), FinalAnswer("sorry")])
        result = await make_orchestrator(gateway).run("q")
        assert result.text == "sorry"
        assert gateway.calls[1][-1].content.startswith("ERROR:")

    async def test_validation_message_passed_through(self, make_orchestrator, scripted_gateway, request_tool):
        gateway = scripted_gateway([
            request_tool("calculate_compound_interest", principal=-5, rate=0.1, years=1),
            FinalAnswer("invalid"),
        ])
        await make_orchestrator(gateway).run("q")
        assert gateway.calls[1][-1].content.startswith("Invalid input")


@pytest.mark.asyncio
class TestLoopBound:

    @pytest.mark.parametrize("bound", [1, 3, 5])
    async def test_always_tool_calls_fails_after_bound(self, make_orchestrator, scripted_gateway,
                                                        request_tool, bound):
        gateway = scripted_gateway([request_tool("get_market_summary")])

        with pytest.raises(ToolLoopExceededError) as exc:
            await make_orchestrator(gateway, max_tool_iterations=bound).run("loop forever")

        assert exc.value.iterations == bound
        assert len(gateway.calls) == bound

    async def test_answer_on_last_allowed_iteration(self, make_orchestrator, scripted_gateway, request_tool):
        gateway = scripted_gateway([
            request_tool("get_market_summary"),
            request_tool("get_market_summary"),
            FinalAnswer("finally"),
        ])
        result = await make_orchestrator(gateway, max_tool_iterations=3).run("q")
        assert result.text == "finally"
        assert result.iterations == 3


@pytest.mark.asyncio
class TestBackendFailures:

    @pytest.mark.parametrize("error", [
        BackendUnavailableError("timed out"),
        BackendProtocolError("garbage"),
    ])
    async def test_gateway_error_aborts_turn(self, make_orchestrator, scripted_gateway, error):
        gateway = scripted_gateway(error=error)
        with pytest.raises(type(error)):
            await make_orchestrator(gateway).run("hi")
        assert len(gateway.calls) == 1

    async def test_failure_after_tool_round(self, make_orchestrator, scripted_gateway, request_tool):
        gateway = scripted_gateway([request_tool("get_market_summary")])
        orchestrator = make_orchestrator(gateway)

        original = gateway.complete
        calls = {"n": 0}

        async def fail_second(conversation, catalog, timeout):
            calls["n"] += 1
            if calls["n"] == 2:
                raise BackendUnavailableError("down")
            return await original(conversation, catalog, timeout)

        gateway.complete = fail_second
        with pytest.raises(BackendUnavailableError):
            await orchestrator.run("q")


def test_render_tool_output():
    assert render_tool_output("plain") == "plain"
    assert json.loads(render_tool_output({"a": 1})) == {"a": 1}


def test_bound_must_be_positive(make_orchestrator, scripted_gateway):
    with pytest.raises(ValueError):
        make_orchestrator(scripted_gateway(), max_tool_iterations=0)


def test_retryable_flags():
    assert BackendUnavailableError("x").retryable is True
    assert BackendProtocolError("x").retryable is False
    assert ToolLoopExceededError(3).retryable is False

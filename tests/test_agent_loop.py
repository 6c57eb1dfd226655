"""Tests for the agent loop."""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from freight_assistant.infra.error_handler import NetworkError
from freight_assistant.models.knowledge import CompiledContext
from freight_assistant.models.routing import Mode, ModelTier
from freight_assistant.services.agent_loop import AgentLoop, parse_tool_calls, turn_budget


def text_response(text, prompt_tokens=10, completion_tokens=5):
    return {
        "choices": [{"message": {"role": "assistant", "content": text}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


def tool_response(*calls, text=None):
    return {
        "choices": [{
            "message": {
                "role": "assistant",
                "content": text,
                "tool_calls": [
                    {"id": call_id, "type": "function", "function": {"name": name, "arguments": json.dumps(args)}}
                    for call_id, name, args in calls
                ],
            },
            "finish_reason": "tool_calls",
        }],
        "usage": {"prompt_tokens": 20, "completion_tokens": 8},
    }


@pytest.fixture
def context():
    return CompiledContext(text="system prompt", token_estimate=4)


@pytest.fixture
def model_client():
    client = MagicMock()
    client.complete = AsyncMock()
    return client


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.execute = AsyncMock(return_value={"success": True, "data": []})
    return executor


class TestTurnBudget:

    def test_budgets(self):
        assert turn_budget(Mode.ANALYZE) == 10
        assert turn_budget(Mode.REPORT) == 8
        assert turn_budget(Mode.QUESTION) == 6
        assert turn_budget(Mode.WIDGET) == 6


class TestAgentLoop:
    """Test the bounded conversation loop."""

    @pytest.mark.asyncio
    async def test_natural_completion(self, context, model_client, executor, customer_ctx):
        model_client.complete.return_value = text_response("You spent $1,200.")
        loop = AgentLoop(model_client, executor)
        outcome = await loop.run(context, [{"role": "user", "content": "spend?"}], Mode.QUESTION, ModelTier.FAST, customer_ctx)
        assert outcome.answer == "You spent $1,200."
        assert outcome.exhausted is False
        assert outcome.turns_used == 1
        assert outcome.usage.input == 10
        assert outcome.usage.output == 5
        executor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_system_prompt_sent_first(self, context, model_client, executor, customer_ctx):
        model_client.complete.return_value = text_response("ok")
        await AgentLoop(model_client, executor).run(
            context, [{"role": "user", "content": "q"}], Mode.QUESTION, ModelTier.CAPABLE, customer_ctx,
        )
        tier, messages = model_client.complete.call_args.args[:2]
        assert tier == ModelTier.CAPABLE
        assert messages[0] == {"role": "system", "content": "system prompt"}
        assert len(model_client.complete.call_args.kwargs["tools"]) == 8

    @pytest.mark.asyncio
    async def test_budget_never_exceeded(self, context, model_client, executor, customer_ctx):
        """A model that always asks for tools stops at the budget with partial text."""
        model_client.complete.return_value = tool_response(("c1", "get_lanes", {}), text="Checking lanes")
        outcome = await AgentLoop(model_client, executor).run(
            context, [{"role": "user", "content": "q"}], Mode.QUESTION, ModelTier.FAST, customer_ctx,
        )
        assert model_client.complete.await_count == 6
        assert outcome.turns_used == 6
        assert outcome.exhausted is True
        assert outcome.answer == "Checking lanes"
        assert outcome.tool_call_count == 6

    @pytest.mark.asyncio
    async def test_exhaustion_without_text(self, context, model_client, executor, customer_ctx):
        model_client.complete.return_value = tool_response(("c1", "get_lanes", {}))
        outcome = await AgentLoop(model_client, executor).run(
            context, [{"role": "user", "content": "q"}], Mode.ANALYZE, ModelTier.CAPABLE, customer_ctx,
        )
        assert model_client.complete.await_count == 10
        assert outcome.exhausted is True
        assert outcome.answer == ""

    @pytest.mark.asyncio
    async def test_tool_calls_run_concurrently(self, context, model_client, customer_ctx):
        """All calls in one turn are in flight together."""
        in_flight = 0
        peak = 0
        both_started = asyncio.Event()

        async def execute(call, ctx):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            if in_flight == 2:
                both_started.set()
            await asyncio.wait_for(both_started.wait(), timeout=1)
            in_flight -= 1
            return {"success": True, "data": [], "tool": call.name}

        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=execute)
        model_client.complete.side_effect = [
            tool_response(("a", "get_lanes", {}), ("b", "discover_tables", {})),
            text_response("done"),
        ]
        outcome = await AgentLoop(model_client, executor).run(
            context, [{"role": "user", "content": "q"}], Mode.QUESTION, ModelTier.FAST, customer_ctx,
        )
        assert peak == 2
        assert outcome.tool_call_count == 2
        assert outcome.answer == "done"

    @pytest.mark.asyncio
    async def test_results_matched_by_call_id(self, context, model_client, customer_ctx):
        async def execute(call, ctx):
            if call.name == "get_lanes":
                await asyncio.sleep(0.01)
            return {"success": True, "data": [], "tool": call.name}

        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=execute)
        model_client.complete.side_effect = [
            tool_response(("a", "get_lanes", {}), ("b", "discover_tables", {})),
            text_response("done"),
        ]
        transcript = [{"role": "user", "content": "q"}]
        await AgentLoop(model_client, executor).run(context, transcript, Mode.QUESTION, ModelTier.FAST, customer_ctx)

        assert transcript[1]["role"] == "assistant"
        assert [tc["id"] for tc in transcript[1]["tool_calls"]] == ["a", "b"]
        tool_messages = [m for m in transcript if m["role"] == "tool"]
        assert [(m["tool_call_id"], json.loads(m["content"])["tool"]) for m in tool_messages] == [
            ("a", "get_lanes"),
            ("b", "discover_tables"),
        ]

    @pytest.mark.asyncio
    async def test_tool_failure_fed_back(self, context, model_client, customer_ctx):
        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=RuntimeError("boom"))
        model_client.complete.side_effect = [
            tool_response(("a", "get_lanes", {})),
            text_response("Lanes are unavailable right now."),
        ]
        transcript = [{"role": "user", "content": "q"}]
        outcome = await AgentLoop(model_client, executor).run(
            context, transcript, Mode.QUESTION, ModelTier.FAST, customer_ctx,
        )
        assert transcript[-1]["role"] == "tool"
        assert json.loads(transcript[-1]["content"])["success"] is False
        assert outcome.answer == "Lanes are unavailable right now."

    @pytest.mark.asyncio
    async def test_visualizations_in_order(self, context, model_client, customer_ctx):
        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=[
            {"success": True, "data": [{"shipment_count": 12}]},
            {"success": True, "data": [{"carrier_name": "A", "total_spend": 5}, {"carrier_name": "B", "total_spend": 9}]},
        ])
        model_client.complete.side_effect = [
            tool_response(("a", "query_table", {"table_name": "shipment"})),
            tool_response(("b", "aggregate", {
                "table_name": "shipment", "group_by": "carrier_name", "metric": "retail", "aggregation": "sum",
            })),
            text_response("done"),
        ]
        outcome = await AgentLoop(model_client, executor).run(
            context, [{"role": "user", "content": "q"}], Mode.WIDGET, ModelTier.FAST, customer_ctx,
        )
        assert [v.type for v in outcome.visualizations] == ["stat", "bar"]

    @pytest.mark.asyncio
    async def test_model_error_propagates(self, context, model_client, executor, customer_ctx):
        model_client.complete.side_effect = NetworkError("connection reset")
        with pytest.raises(NetworkError):
            await AgentLoop(model_client, executor).run(
                context, [{"role": "user", "content": "q"}], Mode.QUESTION, ModelTier.FAST, customer_ctx,
            )

    @pytest.mark.asyncio
    async def test_trace_entries(self, context, model_client, executor, customer_ctx):
        model_client.complete.side_effect = [
            tool_response(("a", "get_lanes", {"limit": 5}), text="Let me check lanes."),
            text_response("done"),
        ]
        outcome = await AgentLoop(model_client, executor).run(
            context, [{"role": "user", "content": "q"}], Mode.QUESTION, ModelTier.FAST, customer_ctx,
        )
        assert [step.type for step in outcome.trace] == ["thinking", "tool_call", "tool_result", "thinking"]
        assert outcome.trace[1].tool_name == "get_lanes"


class TestParseToolCalls:

    def test_invalid_json_arguments(self):
        parsed = parse_tool_calls([{"id": "x", "function": {"name": "get_lanes", "arguments": "{not json"}}])
        call, error = parsed[0]
        assert call.input == {}
        assert error == "Tool arguments were not valid JSON"

    def test_empty_arguments(self):
        call, error = parse_tool_calls([{"id": "x", "function": {"name": "get_lanes", "arguments": ""}}])[0]
        assert call.input == {}
        assert error is None

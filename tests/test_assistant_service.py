"""Tests for end-to-end assistant orchestration."""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from freight_assistant.infra.circuit_breaker import RunCircuitBreaker
from freight_assistant.infra.error_handler import APIError, ConfigurationError
from freight_assistant.models.knowledge import KnowledgeBundle, KnowledgeItem
from freight_assistant.models.request import AssistantRequest
from freight_assistant.services.assistant_service import (
    RUN_ERROR_ANSWER,
    UNAVAILABLE_ANSWER,
    AssistantService,
    drain_background_tasks,
)


def text_response(text):
    return {
        "choices": [{"message": {"role": "assistant", "content": text}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 20},
    }


def tool_response(call_id, name, args):
    return {
        "choices": [{
            "message": {
                "role": "assistant",
                "content": None,
                "tool_calls": [{"id": call_id, "type": "function", "function": {"name": name, "arguments": json.dumps(args)}}],
            },
            "finish_reason": "tool_calls",
        }],
        "usage": {"prompt_tokens": 80, "completion_tokens": 10},
    }


ANSWER = "Your total spend is $12,345.60.\n\nFollow-up questions:\n- How does that compare to last month?"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def model_client():
    client = MagicMock()
    client.complete = AsyncMock(return_value=text_response(ANSWER))
    return client


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.execute = AsyncMock(return_value={"success": True, "data": [{"total_spend": 12345.6}]})
    return executor


@pytest.fixture
def store():
    store = MagicMock()
    store.fetch_bundle.return_value = KnowledgeBundle(
        global_knowledge=[KnowledgeItem(id=1, type="term", key="ltl", label="LTL", definition="Less than truckload")],
        tenant_knowledge=[KnowledgeItem(id=7, type="rule", key="fy", label="Fiscal year", definition="Starts in July")],
    )
    return store


@pytest.fixture
def privileges():
    privileges = MagicMock()
    privileges.is_privileged.return_value = False
    return privileges


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return RunCircuitBreaker(failure_threshold=5, cooldown_seconds=60, clock=clock)


@pytest.fixture
def run_logger():
    return AsyncMock()


@pytest.fixture
def service(model_client, executor, store, privileges, breaker, run_logger):
    return AssistantService(
        model_client=model_client,
        executor=executor,
        store=store,
        privileges=privileges,
        breaker=breaker,
        run_logger=run_logger,
    )


def ask(question="total spend", **kwargs):
    return AssistantRequest(question=question, tenantId="42", userId="user-1", **kwargs)


class TestSuccessfulRun:
    """Test the happy path."""

    @pytest.mark.asyncio
    async def test_answer_and_metadata(self, service):
        response = await service.handle_question(ask())
        await drain_background_tasks()

        assert response.success is True
        assert response.answer == ANSWER
        assert response.error is None
        assert response.reasoning is None
        assert response.metadata.mode == "question"
        assert response.metadata.model_tier == "fast"
        assert response.metadata.knowledge_items_used == 2
        assert response.metadata.tokens_used.input == 100
        assert [f.question for f in response.follow_up_questions] == ["How does that compare to last month?"]

    @pytest.mark.asyncio
    async def test_tool_run_produces_visualization(self, service, model_client, executor):
        model_client.complete.side_effect = [
            tool_response("c1", "aggregate", {
                "table_name": "shipment", "group_by": "customer_id", "metric": "retail", "aggregation": "sum",
            }),
            text_response(ANSWER),
        ]
        response = await service.handle_question(ask("what is my total spend"))
        await drain_background_tasks()

        assert response.metadata.tool_call_count == 1
        assert len(response.visualizations) == 1
        assert response.visualizations[0].type == "stat"
        exec_ctx = executor.execute.call_args.args[1]
        assert exec_ctx.tenant_id == "42"
        assert exec_ctx.is_privileged is False

    @pytest.mark.asyncio
    async def test_reasoning_trace(self, service):
        response = await service.handle_question(ask(preferences={"showReasoning": True}))
        await drain_background_tasks()
        assert [step.type for step in response.reasoning[:3]] == ["routing", "model", "context"]

    @pytest.mark.asyncio
    async def test_customer_answer_redacted(self, service, model_client):
        model_client.complete.return_value = text_response("Carrier cost was $4,200 on that lane.")
        response = await service.handle_question(ask())
        await drain_background_tasks()
        assert "$4,200" not in response.answer

    @pytest.mark.asyncio
    async def test_admin_answer_not_redacted(self, service, model_client, privileges):
        privileges.is_privileged.return_value = True
        model_client.complete.return_value = text_response("Carrier cost was $4,200 on that lane.")
        response = await service.handle_question(ask())
        await drain_background_tasks()
        assert "$4,200" in response.answer

    @pytest.mark.asyncio
    async def test_analyze_uses_capable_tier(self, service, model_client):
        response = await service.handle_question(ask("why did spend go up in March?"))
        await drain_background_tasks()
        assert response.metadata.mode == "analyze"
        assert response.metadata.model_tier == "capable"
        assert "MODE: ANALYZE" in model_client.complete.call_args.args[1][0]["content"]

    @pytest.mark.asyncio
    async def test_run_logged(self, service, run_logger):
        await service.handle_question(ask())
        await drain_background_tasks()
        run_logger.assert_awaited_once()
        assert run_logger.call_args.kwargs["status"] == "success"
        assert run_logger.call_args.kwargs["mode"] == "question"


class TestUsageTracking:
    """Knowledge usage increments are attempted once and never affect the result."""

    @pytest.mark.asyncio
    async def test_attempted_once(self, service, store):
        await service.handle_question(ask())
        await drain_background_tasks()
        store.increment_usage.assert_called_once_with([1, 7])

    @pytest.mark.asyncio
    async def test_failure_does_not_change_result(self, service, store):
        baseline = await service.handle_question(ask())
        await drain_background_tasks()

        store.increment_usage.reset_mock()
        store.increment_usage.side_effect = RuntimeError("deadlock detected")
        response = await service.handle_question(ask())
        await drain_background_tasks()

        store.increment_usage.assert_called_once()
        assert response.success is baseline.success is True
        assert response.answer == baseline.answer

    @pytest.mark.asyncio
    async def test_attempted_once_on_degraded_run(self, service, store):
        store.fetch_bundle.side_effect = RuntimeError("knowledge store down")
        response = await service.handle_question(ask())
        await drain_background_tasks()

        assert response.success is True
        assert response.metadata.knowledge_items_used == 0
        store.increment_usage.assert_called_once_with([])

    @pytest.mark.asyncio
    async def test_attempted_once_on_model_failure(self, service, store, model_client):
        model_client.complete.side_effect = APIError("openai server error (500)", status_code=500)
        response = await service.handle_question(ask())
        await drain_background_tasks()

        assert response.success is False
        store.increment_usage.assert_called_once_with([1, 7])


class TestFailures:
    """Failures become well-formed responses."""

    @pytest.mark.asyncio
    async def test_model_failure(self, service, model_client, breaker):
        model_client.complete.side_effect = APIError("openai server error (500)", status_code=500)
        response = await service.handle_question(ask())
        await drain_background_tasks()

        assert response.success is False
        assert response.answer == RUN_ERROR_ANSWER
        assert response.metadata.mode == "error"
        assert response.error == "openai server error (500)"
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_breaker_opens_after_five_failures(self, service, model_client, breaker, clock):
        model_client.complete.side_effect = APIError("openai server error (500)", status_code=500)
        for _ in range(5):
            await service.handle_question(ask())
        await drain_background_tasks()
        model_client.complete.reset_mock()

        response = await service.handle_question(ask())
        assert response.success is False
        assert response.answer == UNAVAILABLE_ANSWER
        assert response.visualizations == []
        assert response.metadata.mode == "error"
        model_client.complete.assert_not_called()

        clock.now += 60
        model_client.complete.side_effect = None
        model_client.complete.return_value = text_response(ANSWER)
        response = await service.handle_question(ask())
        await drain_background_tasks()
        assert response.success is True

    @pytest.mark.asyncio
    async def test_success_resets_breaker(self, service, model_client, breaker):
        model_client.complete.side_effect = APIError("boom", status_code=500)
        for _ in range(4):
            await service.handle_question(ask())
        model_client.complete.side_effect = None
        model_client.complete.return_value = text_response(ANSWER)
        await service.handle_question(ask())
        await drain_background_tasks()
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_missing_question_no_breaker_impact(self, service, breaker, model_client):
        response = await service.handle_question(AssistantRequest(question="", tenantId="42"))
        assert response.success is False
        assert response.error == "question is required"
        assert breaker.failure_count == 0
        model_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_tenant(self, service):
        response = await service.handle_question(AssistantRequest(question="total spend"))
        assert response.success is False
        assert response.error == "tenantId is required"

    @pytest.mark.asyncio
    async def test_configuration_error_no_breaker_impact(self, service, model_client, breaker):
        model_client.ensure_configured.side_effect = ConfigurationError("OPENAI_API_KEY not configured")
        response = await service.handle_question(ask())
        assert response.success is False
        assert response.error == "OPENAI_API_KEY not configured"
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_exhausted_budget_still_succeeds(self, service, model_client):
        model_client.complete.return_value = tool_response("c1", "get_lanes", {})
        response = await service.handle_question(ask())
        await drain_background_tasks()
        assert response.success is True
        assert response.answer
        assert model_client.complete.await_count == 6


class TestCompileMode:
    """Compile mode returns structured filters instead of running the loop."""

    @pytest.mark.asyncio
    async def test_fallback_filters(self, service, model_client, executor):
        model_client.complete.side_effect = APIError("openai server error (503)", status_code=503)
        response = await service.handle_question(ask("compile: shipments over $500 from CA"))
        await drain_background_tasks()

        assert response.metadata.mode == "compile"
        assert response.success is True
        assert response.compiled_filters.source == "pattern"
        assert response.compiled_filters.filters == [
            {"field": "retail", "operator": "gt", "value": 500},
            {"field": "origin_state", "operator": "eq", "value": "CA"},
        ]
        executor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_uncompilable(self, service, model_client, breaker):
        model_client.complete.side_effect = APIError("openai server error (503)", status_code=503)
        response = await service.handle_question(ask("compile something vague"))
        await drain_background_tasks()
        assert response.success is False
        assert response.error
        assert breaker.failure_count == 0


class TestDefaults:
    """Collaborators default to the process-wide instances."""

    def test_process_wide_executor_and_compiler(self, store):
        from freight_assistant.services.filter_compiler import filter_compiler
        from freight_assistant.services.tool_execution_engine import tool_execution_engine

        service = AssistantService(store=store)
        assert service.executor is tool_execution_engine
        assert service.filter_compiler is filter_compiler

    def test_injected_model_client_backs_compiler(self, model_client):
        service = AssistantService(model_client=model_client)
        assert service.filter_compiler.model_client is model_client

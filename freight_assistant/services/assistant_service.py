"""Assistant service: request-boundary orchestration of one question."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

from freight_assistant.adapters.vendor_adapter_openai import OpenAIChatClient, model_for_tier, openai_chat_client
from freight_assistant.infra.circuit_breaker import CircuitState, RunCircuitBreaker, assistant_circuit_breaker
from freight_assistant.infra.error_handler import AssistantError, ConfigurationError, InputError
from freight_assistant.infra.metrics import assistant_run_duration, assistant_runs_total, circuit_breaker_state
from freight_assistant.infra.validation import validate_request
from freight_assistant.logging.event_logger import log_assistant_run
from freight_assistant.models.knowledge import CompiledContext
from freight_assistant.models.request import AssistantRequest
from freight_assistant.models.response import AssistantResponse, ReasoningStep, ResponseMetadata, RunOutcome
from freight_assistant.models.routing import Mode, ModelSelection, RouteDecision
from freight_assistant.services.agent_loop import AgentLoop
from freight_assistant.services.context_compiler import (
    build_transcript,
    compile_context,
    mode_instruction_section,
    with_section,
)
from freight_assistant.services.filter_compiler import FilterCompiler, filter_compiler as default_filter_compiler
from freight_assistant.services.follow_up_extractor import extract_follow_ups
from freight_assistant.services.knowledge_store import KnowledgeStore, knowledge_store
from freight_assistant.services.mode_router import route
from freight_assistant.services.model_selector import select_model
from freight_assistant.services.output_guard import OutputGuardStatus, guard_answer
from freight_assistant.services.privilege_service import PrivilegeService, privilege_service
from freight_assistant.services.tool_execution_engine import ExecutionContext, ToolExecutionEngine, tool_execution_engine

logger = logging.getLogger(__name__)

ERROR_MODE = "error"

UNAVAILABLE_ANSWER = (
    "I'm sorry, the assistant is temporarily unavailable because of repeated errors. "
    "Please try again in a minute."
)
RUN_ERROR_ANSWER = "I encountered an error during the investigation. Please try again."
INPUT_ERROR_ANSWER = "Please provide a question and an account to answer it for."
CONFIGURATION_ERROR_ANSWER = "The assistant is not configured correctly. Please contact support."
EMPTY_ANSWER = "I wasn't able to reach a conclusion with the steps available. Try narrowing the question."

# Detached side-effect tasks; references are held so they are not garbage collected mid-flight.
_background_tasks: Set[asyncio.Task] = set()


def _log_task_failure(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Background task {task.get_name()} failed: {error}")


def spawn_background(coro: Awaitable[Any], name: str) -> asyncio.Task:
    """Run a best-effort side effect without joining it into the response."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_log_task_failure)
    return task


async def drain_background_tasks() -> None:
    """Wait for outstanding side effects (shutdown and tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


class AssistantService:
    """
    Answers one question end to end.

    Nothing raises past ``handle_question``: every failure becomes a
    well-formed AssistantResponse with ``success`` False and an ``error``.
    """

    def __init__(
        self,
        model_client: Optional[OpenAIChatClient] = None,
        executor: Optional[ToolExecutionEngine] = None,
        store: Optional[KnowledgeStore] = None,
        privileges: Optional[PrivilegeService] = None,
        breaker: Optional[RunCircuitBreaker] = None,
        filter_compiler: Optional[FilterCompiler] = None,
        run_logger: Optional[Callable[..., Awaitable[None]]] = None,
    ):
        self.model_client = model_client or openai_chat_client
        self.executor = executor or tool_execution_engine
        self.store = store or knowledge_store
        self.privileges = privileges or privilege_service
        self.breaker = breaker or assistant_circuit_breaker
        if filter_compiler is None:
            filter_compiler = FilterCompiler(model_client) if model_client else default_filter_compiler
        self.filter_compiler = filter_compiler
        self.run_logger = run_logger or log_assistant_run
        self.agent_loop = AgentLoop(self.model_client, self.executor)

    def _update_breaker_gauge(self) -> None:
        circuit_breaker_state.labels(service="assistant").set(
            1 if self.breaker.state == CircuitState.OPEN else 0
        )

    def _error_response(
        self,
        answer: str,
        error: str,
        start_time: float,
        trace: Optional[List[ReasoningStep]] = None,
        show_reasoning: bool = False,
    ) -> AssistantResponse:
        return AssistantResponse(
            success=False,
            answer=answer,
            visualizations=[],
            reasoning=trace if show_reasoning else None,
            follow_up_questions=[],
            metadata=ResponseMetadata(
                processing_time_ms=int((time.time() - start_time) * 1000),
                tool_call_count=0,
                mode=ERROR_MODE,
            ),
            error=error,
        )

    async def _increment_usage(self, knowledge_ids: List[int]) -> None:
        await asyncio.to_thread(self.store.increment_usage, knowledge_ids)

    def _track_usage(self, context: CompiledContext) -> None:
        spawn_background(self._increment_usage(list(context.knowledge_ids)), name="knowledge-usage")

    def _log_run(self, request: AssistantRequest, mode: Mode, selection: ModelSelection, start_time: float,
                 outcome: Optional[RunOutcome] = None, status: str = "success", error: Optional[str] = None) -> None:
        spawn_background(
            self.run_logger(
                tenant_id=request.tenant_id,
                user_id=request.user_id,
                mode=mode.value,
                model=model_for_tier(selection.tier),
                status=status,
                input_tokens=outcome.usage.input if outcome else 0,
                output_tokens=outcome.usage.output if outcome else 0,
                latency_ms=int((time.time() - start_time) * 1000),
                tool_turns=outcome.tool_call_count if outcome else 0,
                error_message=error,
            ),
            name="assistant-run-log",
        )

    async def handle_question(self, request: AssistantRequest) -> AssistantResponse:
        """
        Answer a question.

        Args:
            request: Validated-shape request from the HTTP layer

        Returns:
            AssistantResponse (never raises)
        """
        start_time = time.time()
        show_reasoning = request.preferences.show_reasoning

        try:
            question = validate_request(request)
        except InputError as e:
            assistant_runs_total.labels(mode=ERROR_MODE, status="rejected").inc()
            return self._error_response(INPUT_ERROR_ANSWER, e.message, start_time)

        if not self.breaker.can_execute():
            logger.warning(
                "Circuit breaker open, rejecting assistant run",
                extra={"tenant_id": request.tenant_id, "retry_after": self.breaker.retry_after()},
            )
            assistant_runs_total.labels(mode=ERROR_MODE, status="circuit_open").inc()
            self._update_breaker_gauge()
            return self._error_response(UNAVAILABLE_ANSWER, "Service temporarily unavailable", start_time)
        self._update_breaker_gauge()

        try:
            self.model_client.ensure_configured()
        except ConfigurationError as e:
            logger.error(f"Assistant misconfigured: {e.message}")
            assistant_runs_total.labels(mode=ERROR_MODE, status="rejected").inc()
            return self._error_response(CONFIGURATION_ERROR_ANSWER, e.message, start_time)

        decision = route(question, request.preferences)
        selection = select_model(question, decision.mode, request.preferences.model_tier)
        trace: List[ReasoningStep] = [
            ReasoningStep(
                type="routing",
                content=f"Mode: {decision.mode.value} ({decision.reason}, confidence {decision.confidence:.2f})",
            ),
            ReasoningStep(
                type="model",
                content=f"Model tier: {selection.tier.value} ({selection.reason}, confidence {selection.confidence:.2f})",
            ),
        ]

        try:
            is_privileged, context = await self._prepare_context(request, trace)
            # One usage attempt per run that got as far as a compiled context, failed or not
            self._track_usage(context)
            return await self._run(request, question, decision, selection, trace, start_time, is_privileged, context)
        except Exception as e:
            self.breaker.record_failure()
            self._update_breaker_gauge()
            assistant_runs_total.labels(mode=decision.mode.value, status="failure").inc()
            logger.error(
                f"Assistant run failed: {e}",
                extra={"tenant_id": request.tenant_id, "mode": decision.mode.value},
                exc_info=True,
            )
            self._log_run(request, decision.mode, selection, start_time, status="failure", error=str(e))
            error = e.message if isinstance(e, AssistantError) else type(e).__name__
            return self._error_response(RUN_ERROR_ANSWER, error, start_time, trace, show_reasoning)

    async def _prepare_context(self, request: AssistantRequest, trace: List[ReasoningStep]) -> Tuple[bool, CompiledContext]:
        is_privileged = await asyncio.to_thread(self.privileges.is_privileged, request.user_id)
        context = await asyncio.to_thread(compile_context, request.tenant_id, is_privileged, self.store)
        if context.degraded:
            trace.append(ReasoningStep(type="context", content="Knowledge unavailable; using minimal context"))
        else:
            trace.append(ReasoningStep(
                type="context",
                content=f"Loaded {len(context.knowledge_ids)} knowledge items (~{context.token_estimate} tokens)",
            ))
        return is_privileged, context

    async def _run(
        self,
        request: AssistantRequest,
        question: str,
        decision: RouteDecision,
        selection: ModelSelection,
        trace: List[ReasoningStep],
        start_time: float,
        is_privileged: bool,
        context: CompiledContext,
    ) -> AssistantResponse:
        mode = decision.mode

        if mode == Mode.COMPILE:
            compilation = await self.filter_compiler.compile(question, context.text, is_privileged)
            assistant_runs_total.labels(mode=mode.value, status="success" if compilation.success else "failure").inc()
            assistant_run_duration.labels(mode=mode.value).observe(time.time() - start_time)
            if compilation.success:
                self.breaker.record_success()
                self._update_breaker_gauge()
            answer = compilation.reasoning or (
                f"Compiled {len(compilation.filters or [])} filter(s)." if compilation.success
                else "I couldn't turn that into filters."
            )
            return AssistantResponse(
                success=compilation.success,
                answer=answer,
                visualizations=[],
                reasoning=trace if request.preferences.show_reasoning else None,
                follow_up_questions=[],
                metadata=ResponseMetadata(
                    processing_time_ms=int((time.time() - start_time) * 1000),
                    tool_call_count=0,
                    mode=mode.value,
                    model_tier=selection.tier.value,
                    model_reason=selection.reason,
                    context_tokens=context.token_estimate,
                    knowledge_items_used=len(context.knowledge_ids),
                ),
                compiled_filters=compilation,
                error=compilation.error,
            )

        context = with_section(context, mode_instruction_section(mode, request.context))
        transcript = build_transcript(request.conversation_history, question)
        exec_ctx = ExecutionContext(
            tenant_id=request.tenant_id,
            user_id=request.user_id,
            is_privileged=is_privileged,
        )

        outcome = await self.agent_loop.run(
            context=context,
            transcript=transcript,
            mode=mode,
            tier=selection.tier,
            exec_ctx=exec_ctx,
            max_tokens=request.preferences.max_tokens,
            trace=trace,
        )

        self.breaker.record_success()
        self._update_breaker_gauge()
        self._log_run(request, mode, selection, start_time, outcome=outcome)

        guarded = guard_answer(outcome.answer, is_privileged)
        if guarded.status == OutputGuardStatus.REDACTED:
            logger.warning(
                f"Redacted {len(guarded.issues)} restricted disclosure(s) from answer",
                extra={"tenant_id": request.tenant_id, "codes": sorted({i.code for i in guarded.issues})},
            )

        assistant_runs_total.labels(mode=mode.value, status="success").inc()
        assistant_run_duration.labels(mode=mode.value).observe(time.time() - start_time)

        return AssistantResponse(
            success=True,
            answer=guarded.sanitized_answer or EMPTY_ANSWER,
            visualizations=outcome.visualizations,
            reasoning=outcome.trace if request.preferences.show_reasoning else None,
            follow_up_questions=extract_follow_ups(guarded.sanitized_answer),
            metadata=ResponseMetadata(
                processing_time_ms=int((time.time() - start_time) * 1000),
                tool_call_count=outcome.tool_call_count,
                mode=mode.value,
                model_tier=selection.tier.value,
                model_reason=selection.reason,
                tokens_used=outcome.usage,
                context_tokens=context.token_estimate,
                knowledge_items_used=len(context.knowledge_ids),
            ),
        )


assistant_service = AssistantService()

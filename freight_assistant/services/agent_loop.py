"""Agent loop: bounded multi-turn conversation with parallel tool execution."""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from freight_assistant.adapters.vendor_adapter_openai import OpenAIChatClient
from freight_assistant.models.knowledge import CompiledContext
from freight_assistant.models.response import ReasoningStep, RunOutcome
from freight_assistant.models.routing import Mode, ModelTier
from freight_assistant.models.tool import ToolCall, ToolDefinition
from freight_assistant.models.visualization import Visualization
from freight_assistant.services.tool_execution_engine import ExecutionContext, ToolExecutionEngine
from freight_assistant.services.tool_registry import get_tool_catalog
from freight_assistant.services.visualization_synthesizer import synthesize

logger = logging.getLogger(__name__)

TURN_BUDGETS = {
    Mode.ANALYZE: 10,
    Mode.REPORT: 8,
}
DEFAULT_TURN_BUDGET = 6

THINKING_TRACE_CHARS = 500
RESULT_TRACE_CHARS = 400
DEFAULT_MAX_TOKENS = 4096


def turn_budget(mode: Mode) -> int:
    return TURN_BUDGETS.get(mode, DEFAULT_TURN_BUDGET)


def parse_tool_calls(raw_tool_calls: List[Dict[str, Any]]) -> List[Tuple[ToolCall, Optional[str]]]:
    """
    Decode OpenAI tool calls into ToolCall values.

    Returns (call, parse_error) pairs; calls with undecodable arguments carry
    an error and are answered without execution.
    """
    parsed = []
    for tc in raw_tool_calls:
        function = tc.get("function") or {}
        raw_args = function.get("arguments") or {}
        error = None
        if isinstance(raw_args, str):
            try:
                args = json.loads(raw_args) if raw_args.strip() else {}
            except json.JSONDecodeError:
                args = {}
                error = "Tool arguments were not valid JSON"
        else:
            args = raw_args
        if not isinstance(args, dict):
            args = {}
            error = "Tool arguments must be a JSON object"
        parsed.append((ToolCall(id=tc.get("id") or "", name=function.get("name") or "", input=args), error))
    return parsed


class AgentLoop:
    """
    Drives one request's conversation with the model.

    States: awaiting model response -> done, or -> executing tools -> awaiting
    model response, bounded by the mode's turn budget. Model errors propagate
    to the caller; tool errors are fed back into the conversation.
    """

    def __init__(
        self,
        model_client: OpenAIChatClient,
        executor: ToolExecutionEngine,
        synthesizer: Callable[[str, Dict[str, Any], Any], Optional[Visualization]] = synthesize,
        tools: Optional[List[ToolDefinition]] = None,
    ):
        self.model_client = model_client
        self.executor = executor
        self.synthesizer = synthesizer
        self.tools = tools if tools is not None else get_tool_catalog()

    async def _run_tool(self, call: ToolCall, parse_error: Optional[str], ctx: ExecutionContext) -> Dict[str, Any]:
        if parse_error:
            return {"success": False, "error": parse_error}
        return await self.executor.execute(call, ctx)

    def _visualize(self, call: ToolCall, result: Dict[str, Any]) -> Optional[Visualization]:
        try:
            return self.synthesizer(call.name, call.input, result)
        except Exception as e:
            logger.warning(f"Visualization failed for tool {call.name}: {e}", exc_info=True)
            return None

    async def run(
        self,
        context: CompiledContext,
        transcript: List[Dict[str, Any]],
        mode: Mode,
        tier: ModelTier,
        exec_ctx: ExecutionContext,
        max_tokens: Optional[int] = None,
        trace: Optional[List[ReasoningStep]] = None,
    ) -> RunOutcome:
        """
        Run the loop to natural completion or budget exhaustion.

        Args:
            context: Compiled system prompt
            transcript: Opening transcript (history + question); extended in place
            mode: Operating mode (sets the turn budget)
            tier: Model tier to call
            exec_ctx: Tenant/privilege context for tool execution
            max_tokens: Output token cap per model call
            trace: Trace to extend (created if omitted)

        Returns:
            RunOutcome; never raises for tool failures or budget exhaustion
        """
        outcome = RunOutcome(trace=trace if trace is not None else [])
        budget = turn_budget(mode)
        last_text = ""
        done = False

        for turn in range(budget):
            outcome.turns_used = turn + 1
            messages = [{"role": "system", "content": context.text}] + transcript
            response = await self.model_client.complete(
                tier,
                messages,
                tools=self.tools,
                max_tokens=max_tokens or DEFAULT_MAX_TOKENS,
            )

            usage = response.get("usage") or {}
            outcome.usage.add(usage.get("prompt_tokens") or 0, usage.get("completion_tokens") or 0)

            choices = response.get("choices") or []
            choice = choices[0] if choices else {}
            message = choice.get("message") or {}
            finish_reason = choice.get("finish_reason")
            text = (message.get("content") or "").strip()
            raw_tool_calls = message.get("tool_calls") or []

            if text:
                last_text = text
                outcome.trace.append(ReasoningStep(type="thinking", content=text[:THINKING_TRACE_CHARS]))

            if not raw_tool_calls:
                # Natural completion, or a cut-off (e.g. length) with partial text
                outcome.answer = text
                if finish_reason not in (None, "stop"):
                    logger.info(f"Model stopped with finish_reason={finish_reason}", extra={"turn": turn + 1})
                done = True
                break

            transcript.append({
                "role": "assistant",
                "content": message.get("content") or None,
                "tool_calls": [
                    {
                        "id": tc.get("id"),
                        "type": "function",
                        "function": {
                            "name": (tc.get("function") or {}).get("name"),
                            "arguments": (tc.get("function") or {}).get("arguments"),
                        },
                    }
                    for tc in raw_tool_calls
                ],
            })

            calls = parse_tool_calls(raw_tool_calls)
            for call, _ in calls:
                outcome.tool_call_count += 1
                outcome.trace.append(ReasoningStep(
                    type="tool_call",
                    content=json.dumps(call.input, default=str)[:RESULT_TRACE_CHARS],
                    tool_name=call.name,
                ))

            results = await asyncio.gather(
                *(self._run_tool(call, error, exec_ctx) for call, error in calls),
                return_exceptions=True,
            )

            # Tool results form one synthetic turn, id-matched to the calls.
            for (call, _), result in zip(calls, results):
                if isinstance(result, Exception):
                    logger.error(f"Tool {call.name} raised: {result}", exc_info=result)
                    result = {"success": False, "error": f"{call.name} failed"}

                content = json.dumps(result, default=str)
                outcome.trace.append(ReasoningStep(
                    type="tool_result",
                    content=content[:RESULT_TRACE_CHARS],
                    tool_name=call.name,
                ))
                visualization = self._visualize(call, result)
                if visualization is not None:
                    outcome.visualizations.append(visualization)
                transcript.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": content,
                })

        if not done:
            outcome.exhausted = True
            outcome.answer = last_text
            logger.info(
                f"Turn budget of {budget} exhausted without natural completion",
                extra={"mode": mode.value, "tool_calls": outcome.tool_call_count},
            )

        return outcome

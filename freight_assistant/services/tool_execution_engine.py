"""Tool execution engine: validates, scopes and dispatches data-query tool calls."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from freight_assistant.adapters.data_service_client import DataServiceClient, data_service_client
from freight_assistant.infra.metrics import tool_call_duration, tool_calls_total
from freight_assistant.models.tool import (
    TOOL_INPUT_MODELS,
    AggregateInput,
    DiscoverFieldsInput,
    DiscoverJoinsInput,
    DiscoverTablesInput,
    GetLanesInput,
    QueryTableInput,
    QueryWithJoinInput,
    SearchTextInput,
    ToolCall,
)
from freight_assistant.services.access_policy import (
    drop_restricted,
    is_restricted_field,
    strip_restricted_result,
)

logger = logging.getLogger(__name__)

# Identifiers the model must never supply; the executor injects the tenant itself.
TENANT_SCOPED_PARAMS = ["customer_id", "tenant_id", "client_id", "account_id", "p_customer_id", "customerId", "tenantId"]


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable per-request context; never derived from model output."""
    tenant_id: str
    user_id: Optional[str]
    is_privileged: bool


def override_tenant_parameters(tool_name: str, llm_args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
    """
    Remove tenant identifiers and tenant filters supplied by the model.

    Args:
        tool_name: Requested tool
        llm_args: Arguments provided by the model
        ctx: Execution context from the request

    Returns:
        Copy of the arguments without tenant-scoping parameters
    """
    args = dict(llm_args)
    overrides_applied = []

    for param_name in TENANT_SCOPED_PARAMS:
        if param_name in args:
            overrides_applied.append({"param": param_name, "original_value": str(args.pop(param_name))[:50]})

    filters = args.get("filters")
    if isinstance(filters, list):
        kept = []
        for f in filters:
            if isinstance(f, dict) and f.get("field") in TENANT_SCOPED_PARAMS:
                overrides_applied.append({"param": f"filters.{f.get('field')}", "original_value": str(f.get("value"))[:50]})
                continue
            kept.append(f)
        args["filters"] = kept

    if overrides_applied:
        logger.warning(
            f"Parameter override applied for tool {tool_name}: {overrides_applied}. "
            f"User: {ctx.user_id}, Tenant: {ctx.tenant_id}"
        )
    return args


def validate_tool_input(tool_name: str, args: Dict[str, Any]) -> BaseModel:
    """
    Validate raw model arguments against the input model for ``tool_name``.

    Raises:
        KeyError: Unknown tool
        ValidationError: Invalid arguments
    """
    model = TOOL_INPUT_MODELS[tool_name]
    return model.model_validate(args)


def apply_access_rules(parsed: BaseModel, is_privileged: bool) -> Tuple[BaseModel, Optional[str]]:
    """
    Remove restricted fields from a validated input for non-privileged callers.

    Returns:
        (input, error); error is set when the request cannot be served at all
    """
    if is_privileged:
        return parsed, None

    if isinstance(parsed, AggregateInput):
        if is_restricted_field(parsed.metric) or is_restricted_field(parsed.group_by):
            return parsed, "Access denied: that field is not available. Use retail for spend."
        return parsed.model_copy(update={
            "filters": [f for f in parsed.filters if not is_restricted_field(f.field)],
        }), None

    if isinstance(parsed, (QueryTableInput, QueryWithJoinInput)):
        select = drop_restricted(parsed.select) or ["*"]
        return parsed.model_copy(update={
            "select": select,
            "filters": [f for f in parsed.filters if not is_restricted_field(f.field)],
            "group_by": drop_restricted(parsed.group_by),
            "aggregations": [
                a for a in parsed.aggregations
                if not is_restricted_field(a.field) and not is_restricted_field(a.alias)
            ],
            "order_by": None if is_restricted_field(parsed.order_by) else parsed.order_by,
        }), None

    return parsed, None


def normalize_result(raw: Any) -> Dict[str, Any]:
    """Shape a data-service response into a tool result dict."""
    if isinstance(raw, dict):
        if "success" in raw:
            return raw
        return {"success": True, **raw}
    if isinstance(raw, list):
        return {"success": True, "data": raw, "row_count": len(raw)}
    if raw is None:
        return {"success": True, "data": [], "row_count": 0}
    return {"success": True, "data": raw}


class ToolExecutionEngine:
    """Closed dispatcher over the eight data-query tools."""

    def __init__(self, client: Optional[DataServiceClient] = None):
        self.client = client or data_service_client
        self._handlers: Dict[str, Callable[[Any, ExecutionContext], Any]] = {
            "discover_tables": self._discover_tables,
            "discover_fields": self._discover_fields,
            "discover_joins": self._discover_joins,
            "search_text": self._search_text,
            "query_table": self._query_table,
            "query_with_join": self._query_with_join,
            "aggregate": self._aggregate,
            "get_lanes": self._get_lanes,
        }

    @property
    def tool_names(self) -> List[str]:
        return list(self._handlers)

    def _discover_tables(self, inp: DiscoverTablesInput, ctx: ExecutionContext) -> Any:
        return self.client.get_tables(inp.category, inp.include_row_counts)

    def _discover_fields(self, inp: DiscoverFieldsInput, ctx: ExecutionContext) -> Any:
        return self.client.get_fields(inp.table_name, inp.include_samples, ctx.is_privileged)

    def _discover_joins(self, inp: DiscoverJoinsInput, ctx: ExecutionContext) -> Any:
        return self.client.get_table_joins(inp.table_name)

    def _search_text(self, inp: SearchTextInput, ctx: ExecutionContext) -> Any:
        return self.client.search_text(ctx.tenant_id, ctx.is_privileged, inp.query, inp.match_type, inp.limit)

    def _query_table(self, inp: QueryTableInput, ctx: ExecutionContext) -> Any:
        return self.client.query_table(
            ctx.tenant_id,
            ctx.is_privileged,
            inp.table_name,
            select=inp.select,
            filters=[f.model_dump() for f in inp.filters],
            group_by=inp.group_by,
            aggregations=[a.model_dump(exclude_none=True) for a in inp.aggregations],
            order_by=inp.order_by,
            order_dir=inp.order_dir,
            limit=inp.limit,
        )

    def _query_with_join(self, inp: QueryWithJoinInput, ctx: ExecutionContext) -> Any:
        return self.client.query_with_join(
            ctx.tenant_id,
            ctx.is_privileged,
            inp.base_table,
            joins=[j.model_dump(exclude_none=True) for j in inp.joins],
            select=inp.select,
            filters=[f.model_dump() for f in inp.filters],
            group_by=inp.group_by,
            aggregations=[a.model_dump(exclude_none=True) for a in inp.aggregations],
            order_by=inp.order_by,
            limit=inp.limit,
        )

    def _aggregate(self, inp: AggregateInput, ctx: ExecutionContext) -> Any:
        return self.client.aggregate(
            ctx.tenant_id,
            ctx.is_privileged,
            inp.table_name,
            group_by=inp.group_by,
            metric=inp.metric,
            aggregation=inp.aggregation,
            filters=[f.model_dump() for f in inp.filters],
            limit=inp.limit,
        )

    def _get_lanes(self, inp: GetLanesInput, ctx: ExecutionContext) -> Any:
        return self.client.get_lanes(ctx.tenant_id, inp.limit)

    async def execute(self, call: ToolCall, ctx: ExecutionContext) -> Dict[str, Any]:
        """
        Execute one tool call.

        Never raises: unknown tools, invalid input, access denials and data
        service failures all come back as ``{"success": False, "error": ...}``.
        """
        start_time = time.time()
        handler = self._handlers.get(call.name)
        if handler is None:
            logger.warning(f"Unknown tool requested: {call.name}", extra={"tenant_id": ctx.tenant_id})
            tool_calls_total.labels(tool_name="unknown", status="rejected").inc()
            return {"success": False, "error": f"Unknown tool: {call.name}"}

        args = override_tenant_parameters(call.name, call.input or {}, ctx)

        try:
            parsed = validate_tool_input(call.name, args)
        except ValidationError as e:
            tool_calls_total.labels(tool_name=call.name, status="rejected").inc()
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            return {"success": False, "error": f"Invalid input for {call.name}: {errors}"}

        parsed, denial = apply_access_rules(parsed, ctx.is_privileged)
        if denial:
            logger.info(f"Restricted field request denied for tool {call.name}", extra={"tenant_id": ctx.tenant_id})
            tool_calls_total.labels(tool_name=call.name, status="rejected").inc()
            return {"success": False, "error": denial}

        try:
            raw = await asyncio.to_thread(handler, parsed, ctx)
            result = normalize_result(raw)
        except Exception as e:
            logger.error(
                f"Tool {call.name} failed: {e}",
                extra={"tenant_id": ctx.tenant_id, "tool_name": call.name},
                exc_info=True,
            )
            tool_calls_total.labels(tool_name=call.name, status="failure").inc()
            return {"success": False, "error": f"{call.name} failed: {e}"}
        finally:
            tool_call_duration.labels(tool_name=call.name).observe(time.time() - start_time)

        if not ctx.is_privileged:
            result = strip_restricted_result(result)

        status = "success" if result.get("success") else "failure"
        tool_calls_total.labels(tool_name=call.name, status=status).inc()
        return result


tool_execution_engine = ToolExecutionEngine()

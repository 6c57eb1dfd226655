"""Filter compiler: natural-language filter descriptions to structured rules."""

import json
import logging
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from freight_assistant.adapters.vendor_adapter_openai import OpenAIChatClient, openai_chat_client
from freight_assistant.infra.error_handler import ModelOutputError
from freight_assistant.infra.metrics import filter_compilations_total
from freight_assistant.models.response import FilterCompilation
from freight_assistant.models.routing import ModelTier
from freight_assistant.services.access_policy import CUSTOMER_PRICE_FIELD, is_restricted_field

logger = logging.getLogger(__name__)

COMPILE_OPERATORS = [
    "eq", "neq", "gt", "gte", "lt", "lte", "in", "not_in",
    "contains", "between", "is_null", "is_not_null",
]

REGIONS: Dict[str, List[str]] = {
    "west coast": ["CA", "OR", "WA"],
    "east coast": ["ME", "NH", "MA", "RI", "CT", "NY", "NJ", "DE", "MD", "VA", "NC", "SC", "GA", "FL"],
    "midwest": ["OH", "IN", "IL", "MI", "WI", "MN", "IA", "MO", "ND", "SD", "NE", "KS"],
    "south": ["TX", "OK", "AR", "LA", "MS", "AL", "TN", "KY", "WV", "VA", "NC", "SC", "GA", "FL"],
}

US_STATE_CODES = {
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA", "HI", "ID", "IL", "IN", "IA",
    "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
    "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC", "SD", "TN", "TX", "UT", "VT",
    "VA", "WA", "WV", "WI", "WY", "DC",
}

# State codes that are also English words; only accepted in upper case
AMBIGUOUS_STATE_WORDS = {"al", "co", "de", "hi", "id", "in", "la", "ma", "me", "oh", "ok", "or", "pa"}

PATTERN_CONFIDENCE = 0.6

_AMOUNT = r"\$?\s*(\d[\d,]*(?:\.\d+)?)"
_OVER_RE = re.compile(r"\b(?:over|greater than|more than|above)\s+" + _AMOUNT, re.IGNORECASE)
_UNDER_RE = re.compile(r"\b(?:under|less than|below)\s+" + _AMOUNT, re.IGNORECASE)
_ORIGIN_RE = re.compile(r"\b(?:from|origin)\s+([a-z]{2})\b", re.IGNORECASE)
_DESTINATION_RE = re.compile(r"\b(?:to|destination)\s+([a-z]{2})\b", re.IGNORECASE)
_DELIVERED_RE = re.compile(r"\bdelivered\b", re.IGNORECASE)
_LATE_RE = re.compile(r"\blate\b", re.IGNORECASE)

SYSTEM_PROMPT = """You convert a freight shipment filter request into JSON.

Respond with ONE JSON object:
{{
  "filters": [{{"field": "<column>", "operator": "<operator>", "value": <value>}}],
  "sort": {{"field": "<column>", "direction": "asc" | "desc"}} or null,
  "limit": <integer> or null,
  "reasoning": "<one sentence>",
  "confidence": <0.0-1.0>,
  "suggestions": ["<optional refinement>"]
}}

Operators: {operators}
Use "in" with a list of values; "between" with [low, high]; omit "value" for is_null / is_not_null.

Regions map to state codes:
{regions}
Use origin_state / destination_state for locations.

{access_rule}

{knowledge}"""


class _CompiledFilter(BaseModel):
    field: str
    operator: Literal[
        "eq", "neq", "gt", "gte", "lt", "lte", "in", "not_in",
        "contains", "between", "is_null", "is_not_null",
    ]
    value: Any = None


class _CompiledSort(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "desc"


class _ModelFilterOutput(BaseModel):
    filters: List[_CompiledFilter] = Field(default_factory=list)
    sort: Optional[_CompiledSort] = None
    limit: Optional[int] = Field(None, gt=0)
    reasoning: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    suggestions: List[str] = Field(default_factory=list)


def _number(raw: str):
    value = float(raw.replace(",", ""))
    return int(value) if value.is_integer() else value


def expand_region(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        return REGIONS.get(value.strip().lower())
    return None


def postprocess_filters(filters: List[Dict[str, Any]], is_privileged: bool) -> List[Dict[str, Any]]:
    """Expand region names to state lists; rewrite restricted fields for customers."""
    processed = []
    for f in filters:
        f = dict(f)
        states = expand_region(f.get("value"))
        if states is not None:
            f["operator"] = "not_in" if f.get("operator") in ("neq", "not_in") else "in"
            f["value"] = list(states)
        if not is_privileged and is_restricted_field(f.get("field")):
            f["field"] = CUSTOMER_PRICE_FIELD
        processed.append(f)
    return processed


def _state_after(regex: re.Pattern, text: str) -> Optional[str]:
    """First valid state code following a location keyword, upper-cased."""
    for match in regex.finditer(text):
        token = match.group(1)
        code = token.upper()
        if code not in US_STATE_CODES:
            continue
        if token != code and token.lower() in AMBIGUOUS_STATE_WORDS:
            continue
        return code
    return None


def compile_with_patterns(prompt_text: str) -> FilterCompilation:
    """
    Deterministic fallback for a fixed set of English constructions.

    Never guesses: no recognized construction means failure.
    """
    text = prompt_text or ""
    filters: List[Dict[str, Any]] = []
    matched: List[str] = []

    over = _OVER_RE.search(text)
    if over:
        filters.append({"field": CUSTOMER_PRICE_FIELD, "operator": "gt", "value": _number(over.group(1))})
        matched.append("minimum amount")

    under = _UNDER_RE.search(text)
    if under:
        filters.append({"field": CUSTOMER_PRICE_FIELD, "operator": "lt", "value": _number(under.group(1))})
        matched.append("maximum amount")

    origin = _state_after(_ORIGIN_RE, text)
    if origin:
        filters.append({"field": "origin_state", "operator": "eq", "value": origin})
        matched.append("origin state")

    destination = _state_after(_DESTINATION_RE, text)
    if destination:
        filters.append({"field": "destination_state", "operator": "eq", "value": destination})
        matched.append("destination state")

    if _DELIVERED_RE.search(text):
        filters.append({"field": "status_name", "operator": "eq", "value": "Delivered"})
        matched.append("delivered status")

    if _LATE_RE.search(text):
        filters.append({"field": "is_late", "operator": "eq", "value": True})
        matched.append("late shipments")

    if not filters:
        return FilterCompilation(
            success=False,
            error="Could not interpret the filter request. Try naming a field, amount or state.",
            source="pattern",
        )

    return FilterCompilation(
        success=True,
        filters=filters,
        reasoning="Matched local patterns: " + ", ".join(matched),
        confidence=PATTERN_CONFIDENCE,
        suggestions=[],
        source="pattern",
    )


class FilterCompiler:
    """Model-backed filter compiler with a local pattern fallback."""

    def __init__(self, model_client: Optional[OpenAIChatClient] = None):
        self.model_client = model_client or openai_chat_client

    def _system_prompt(self, knowledge_context: str, is_privileged: bool) -> str:
        regions = "\n".join(f"- {name}: {', '.join(codes)}" for name, codes in REGIONS.items())
        if is_privileged:
            access_rule = "All fields are available."
        else:
            access_rule = (
                f"Cost or spend always means the {CUSTOMER_PRICE_FIELD} field. "
                "Never use cost, margin or carrier_cost."
            )
        return SYSTEM_PROMPT.format(
            operators=", ".join(COMPILE_OPERATORS),
            regions=regions,
            access_rule=access_rule,
            knowledge=knowledge_context or "",
        ).strip()

    async def _compile_with_model(self, prompt_text: str, knowledge_context: str, is_privileged: bool) -> FilterCompilation:
        response = await self.model_client.complete(
            ModelTier.FAST,
            [
                {"role": "system", "content": self._system_prompt(knowledge_context, is_privileged)},
                {"role": "user", "content": prompt_text},
            ],
            max_tokens=1024,
            response_format={"type": "json_object"},
        )
        choices = response.get("choices") or []
        content = ((choices[0].get("message") or {}).get("content") if choices else None) or ""
        try:
            parsed = _ModelFilterOutput.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ModelOutputError(f"Malformed filter JSON from model: {e}")

        filters = postprocess_filters([f.model_dump() for f in parsed.filters], is_privileged)
        sort = parsed.sort.model_dump() if parsed.sort else None
        if sort and not is_privileged and is_restricted_field(sort["field"]):
            sort["field"] = CUSTOMER_PRICE_FIELD
        return FilterCompilation(
            success=True,
            filters=filters,
            sort=sort,
            limit=parsed.limit,
            reasoning=parsed.reasoning,
            confidence=parsed.confidence,
            suggestions=parsed.suggestions,
            source="model",
        )

    async def compile(self, prompt_text: str, knowledge_context: str = "", is_privileged: bool = False) -> FilterCompilation:
        """
        Compile a filter description.

        The pattern fallback runs only when the model path raises.
        """
        try:
            result = await self._compile_with_model(prompt_text, knowledge_context, is_privileged)
        except Exception as e:
            logger.warning(f"Model filter compilation failed, using pattern fallback: {e}")
            result = compile_with_patterns(prompt_text)

        filter_compilations_total.labels(
            source=result.source,
            status="success" if result.success else "failure",
        ).inc()
        return result


filter_compiler = FilterCompiler()

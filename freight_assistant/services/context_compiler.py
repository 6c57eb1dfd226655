"""Knowledge context compiler with a typed prompt-section builder."""

import logging
import math
import tiktoken
from typing import Dict, List, Optional

from freight_assistant.infra.config import config
from freight_assistant.models.knowledge import (
    CompiledContext,
    KnowledgeBundle,
    KnowledgeItem,
    PromptSection,
    SectionKind,
)
from freight_assistant.models.request import ConversationTurn, RequestContext
from freight_assistant.models.routing import Mode
from freight_assistant.services.access_policy import CUSTOMER_PRICE_FIELD, RESTRICTED_FIELDS
from freight_assistant.services.knowledge_store import KnowledgeStore, knowledge_store

logger = logging.getLogger(__name__)


# Static schema/tool-usage instructions (never tenant dependent)
PREAMBLE = """You are a freight logistics data analyst for a brokerage dashboard. You answer questions about the customer's shipments using REAL DATA from the tools below. Never guess at numbers.

## DATA ACCESS
- Start with discover_tables / discover_fields when you are unsure which table or column holds the data.
- Use discover_joins before query_with_join; include human-readable name columns (carrier_name, mode_name, ...) in select.
- query_table and aggregate handle single-table filtering, grouping and aggregation.
- search_text finds free-text matches (product names, references) across searchable columns.
- get_lanes returns the top origin -> destination lanes by volume and spend.
- Customer scoping is applied automatically. Never pass customer or tenant identifiers.

## RESPONSE FORMAT
1. Lead with a direct answer.
2. Include the key supporting numbers.
3. Note any caveats or data limitations.
4. End with "Follow-up questions:" followed by 2-3 short questions, one per line."""


def access_clause(is_privileged: bool) -> str:
    if is_privileged:
        return (
            "The current user is an administrator. Restricted financial fields "
            f"({', '.join(RESTRICTED_FIELDS)}) are visible and may be queried and reported."
        )
    return (
        "The current user is a customer. The following fields are RESTRICTED and must never be "
        f"queried, mentioned or inferred: {', '.join(RESTRICTED_FIELDS)}.\n"
        f"When the user says \"cost\", \"spend\" or \"price\" they mean what they paid: use the "
        f"{CUSTOMER_PRICE_FIELD} field."
    )


class PromptBuilder:
    """Collects typed sections and serializes them once."""

    def __init__(self):
        self.sections: List[PromptSection] = []

    def add(self, kind: SectionKind, title: str, body: str) -> "PromptBuilder":
        if body and body.strip():
            self.sections.append(PromptSection(kind=kind, title=title, body=body.strip()))
        return self

    def build(self) -> str:
        return "\n\n".join(section.render() for section in self.sections)


def _render_term(item: KnowledgeItem) -> str:
    line = f"- {item.label}: {item.definition}"
    if item.ai_instructions:
        line += f" ({item.ai_instructions})"
    return line


def _render_product(item: KnowledgeItem) -> str:
    keywords = ", ".join(f"\"{k}\"" for k in item.keywords)
    return f"- {item.label}: search for {keywords}"


def _render_field(item: KnowledgeItem) -> str:
    line = f"- {item.label}: {item.definition}"
    if item.ai_instructions:
        line += f" (-> {item.ai_instructions})"
    return line


def _render_rule(item: KnowledgeItem) -> str:
    text = item.definition or item.label
    if item.ai_instructions:
        text += f" {item.ai_instructions}"
    return f"- {text}"


_GROUPS = [
    ("term", "Terms", _render_term),
    ("product", "Products", _render_product),
    ("field", "Fields", _render_field),
    ("rule", "Rules", _render_rule),
]

_GROUPED_TYPES = {item_type for item_type, _, _ in _GROUPS}


def render_knowledge(items: List[KnowledgeItem], included_ids: List[int]) -> str:
    """Render knowledge grouped by type; records every rendered item id."""
    by_type: Dict[str, List[KnowledgeItem]] = {}
    for item in items:
        # Calculations and any type without its own group render as rules
        group = item.type if item.type in _GROUPED_TYPES else "rule"
        by_type.setdefault(group, []).append(item)

    blocks = []
    for item_type, heading, render in _GROUPS:
        group = by_type.get(item_type)
        if not group:
            continue
        blocks.append(f"### {heading}\n" + "\n".join(render(item) for item in group))
        included_ids.extend(item.id for item in group)
    return "\n\n".join(blocks)


def render_profile(bundle: KnowledgeBundle) -> str:
    profile = bundle.profile
    if profile is None or profile.is_empty():
        return ""
    lines = []
    if profile.priorities:
        lines.append("Priorities: " + "; ".join(profile.priorities))
    if profile.key_markets:
        lines.append("Key markets: " + ", ".join(profile.key_markets))
    if profile.terminology:
        lines.append("Terminology: " + "; ".join(f"\"{t.term}\" = {t.means}" for t in profile.terminology))
    if profile.benchmark_period:
        lines.append(f"Benchmark period: {profile.benchmark_period}")
    if profile.account_notes:
        lines.append(f"Notes: {profile.account_notes}")
    return "\n".join(lines)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def _finalize(builder: PromptBuilder, included_ids: List[int], degraded: bool) -> CompiledContext:
    text = builder.build()
    return CompiledContext(
        text=text,
        sections=list(builder.sections),
        knowledge_ids=included_ids,
        token_estimate=estimate_tokens(text),
        degraded=degraded,
    )


def compile_context(
    tenant_id: str,
    is_privileged: bool,
    store: Optional[KnowledgeStore] = None,
) -> CompiledContext:
    """
    Build the system prompt for one request.

    Performs exactly one knowledge-store read. On any store failure the result
    degrades to the preamble and access clause; this function never raises.
    """
    store = store or knowledge_store

    builder = PromptBuilder()
    builder.add(SectionKind.PREAMBLE, "", PREAMBLE)
    builder.add(SectionKind.ACCESS, "ACCESS CONTROL", access_clause(is_privileged))

    try:
        bundle = store.fetch_bundle(tenant_id, is_privileged)
    except Exception as e:
        logger.warning(
            f"Knowledge lookup failed, using minimal context: {e}",
            extra={"tenant_id": tenant_id},
        )
        return _finalize(builder, [], degraded=True)

    included_ids: List[int] = []
    builder.add(
        SectionKind.GLOBAL_KNOWLEDGE,
        "DOMAIN KNOWLEDGE",
        render_knowledge(bundle.global_knowledge, included_ids),
    )
    builder.add(
        SectionKind.TENANT_KNOWLEDGE,
        "CUSTOMER-SPECIFIC KNOWLEDGE (overrides the defaults above)",
        render_knowledge(bundle.tenant_knowledge, included_ids),
    )
    builder.add(
        SectionKind.DOCUMENTS,
        "REFERENCE DOCUMENTS",
        "\n\n".join(f"### {doc.title}\n{doc.content}" for doc in bundle.documents if doc.content),
    )
    builder.add(SectionKind.PROFILE, "CUSTOMER PROFILE", render_profile(bundle))

    return _finalize(builder, included_ids, degraded=False)


MODE_INSTRUCTIONS = {
    Mode.QUESTION: "Answer the question concisely. Use one or two targeted queries where possible.",
    Mode.WIDGET: (
        "The user is building a dashboard widget. Find the query that produces the requested "
        "chart and describe the grouping, metric and aggregation you used."
    ),
    Mode.REPORT: (
        "The user wants a report. Gather several complementary views of the data "
        "(totals, breakdowns, top lanes) and summarize them as report sections."
    ),
    Mode.ANALYZE: (
        "Investigate thoroughly. Form hypotheses, test each with real data across "
        "several dimensions and explain what is driving the numbers."
    ),
    Mode.COMPILE: "Translate the request into structured filters.",
}


def mode_instruction_section(mode: Mode, request_context: Optional[RequestContext] = None) -> PromptSection:
    body = MODE_INSTRUCTIONS[mode]
    if mode == Mode.WIDGET and request_context is not None:
        if request_context.widget_type:
            body += f"\nWidget type: {request_context.widget_type}"
        if request_context.available_fields:
            body += "\nAvailable fields: " + ", ".join(request_context.available_fields)
    return PromptSection(kind=SectionKind.MODE, title=f"MODE: {mode.value.upper()}", body=body)


def with_section(context: CompiledContext, section: PromptSection) -> CompiledContext:
    """Return a copy of the context with one more section appended."""
    sections = context.sections + [section]
    text = "\n\n".join(s.render() for s in sections)
    return CompiledContext(
        text=text,
        sections=sections,
        knowledge_ids=list(context.knowledge_ids),
        token_estimate=estimate_tokens(text),
        degraded=context.degraded,
    )


def build_transcript(
    history: List[ConversationTurn],
    question: str,
    max_history_tokens: Optional[int] = None,
) -> List[dict]:
    """
    Build the opening transcript: prior turns (newest kept first) plus the question.

    History is truncated to ``max_history_tokens`` using cl100k_base; if the
    tokenizer is unavailable the last 10 turns are kept.
    """
    if max_history_tokens is None:
        max_history_tokens = config.HISTORY_TOKEN_BUDGET

    try:
        encoding = tiktoken.get_encoding("cl100k_base")
    except Exception:
        # Fallback to simple message limit if tokenizer fails
        encoding = None

    if encoding:
        selected: List[ConversationTurn] = []
        total_tokens = 0
        for turn in reversed(history):
            turn_tokens = len(encoding.encode(turn.content))
            if total_tokens + turn_tokens > max_history_tokens:
                break
            selected.insert(0, turn)
            total_tokens += turn_tokens
    else:
        selected = list(history[-10:])

    messages = [{"role": turn.role, "content": turn.content} for turn in selected]
    messages.append({"role": "user", "content": question})
    return messages

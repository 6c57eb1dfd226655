"""Knowledge store: batched knowledge read and usage counters."""

import json
import logging
from typing import Any, Dict, List, Type
from pydantic import BaseModel, ValidationError
from sqlalchemy import text

from freight_assistant.infra.database import get_db_session
from freight_assistant.models.knowledge import (
    KnowledgeBundle,
    KnowledgeItem,
    ReferenceDocument,
    TenantProfile,
)

logger = logging.getLogger(__name__)


def _parse_profile(raw: Any) -> TenantProfile:
    if not raw:
        return TenantProfile()
    terminology = []
    for entry in raw.get("terminology") or []:
        if isinstance(entry, dict) and entry.get("term"):
            terminology.append({"term": entry["term"], "means": entry.get("means") or entry.get("meaning") or ""})
    return TenantProfile(
        priorities=raw.get("priorities") or [],
        key_markets=raw.get("key_markets") or [],
        terminology=terminology,
        benchmark_period=raw.get("benchmark_period"),
        account_notes=raw.get("account_notes"),
    )


def _parse_rows(rows: Any, model: Type[BaseModel], section: str) -> list:
    """Parse store rows one at a time; a malformed row is logged and skipped."""
    parsed = []
    for raw in rows or []:
        if not isinstance(raw, dict):
            logger.warning(f"Skipping non-object {section} row from knowledge store")
            continue
        if model is KnowledgeItem:
            raw = {**raw, "metadata": raw.get("metadata") or {}, "times_used": raw.get("times_used") or 0}
        try:
            parsed.append(model(**raw))
        except ValidationError as e:
            logger.warning(
                f"Skipping malformed {section} row {raw.get('id')}: {e.error_count()} validation error(s)",
                extra={"section": section, "row_id": raw.get("id")},
            )
    return parsed


def parse_ai_context(payload: Dict[str, Any]) -> KnowledgeBundle:
    """Convert the ``get_ai_context`` JSON payload into a KnowledgeBundle."""
    documents: List[ReferenceDocument] = _parse_rows(
        (payload.get("global_documents") or []) + (payload.get("customer_documents") or []),
        ReferenceDocument,
        "document",
    )
    return KnowledgeBundle(
        global_knowledge=_parse_rows(payload.get("global_knowledge"), KnowledgeItem, "global_knowledge"),
        tenant_knowledge=_parse_rows(payload.get("customer_knowledge"), KnowledgeItem, "customer_knowledge"),
        documents=documents,
        profile=_parse_profile(payload.get("customer_profile")),
    )


class KnowledgeStore:
    """Postgres-backed knowledge store."""

    def fetch_bundle(self, tenant_id: str, is_privileged: bool) -> KnowledgeBundle:
        """
        Read global and tenant knowledge, documents and profile in one round trip.

        Raises:
            Exception: Any database or decoding error; callers degrade on failure
        """
        with get_db_session() as session:
            raw = session.execute(
                text("SELECT get_ai_context(p_customer_id => :customer_id, p_is_admin => :is_admin)"),
                {"customer_id": tenant_id, "is_admin": is_privileged},
            ).scalar()
        payload = json.loads(raw) if isinstance(raw, (str, bytes)) else (raw or {})
        return parse_ai_context(payload)

    def increment_usage(self, knowledge_ids: List[int]) -> None:
        """Bump ``times_used`` for every included knowledge item."""
        if not knowledge_ids:
            return
        with get_db_session() as session:
            session.execute(
                text("SELECT increment_knowledge_usage(p_knowledge_ids => :ids)"),
                {"ids": list(knowledge_ids)},
            )
        logger.debug(f"Incremented usage for {len(knowledge_ids)} knowledge items")


knowledge_store = KnowledgeStore()

"""Data service client: tenant-scoped schema discovery and query functions.

Each operation calls one ``mcp_*`` Postgres function. The functions apply the
tenant filter and field-level access rules themselves; this client only passes
the arguments through and returns the decoded JSON result.
"""

import json
import logging
from typing import Dict, Any, List, Optional
from sqlalchemy import text

from freight_assistant.infra.database import get_db_session

logger = logging.getLogger(__name__)


def _decode(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class DataServiceClient:
    """Synchronous RPC client; callers run it in worker threads."""

    def _call(self, sql: str, params: Dict[str, Any]) -> Any:
        with get_db_session() as session:
            result = session.execute(text(sql), params).scalar()
        return _decode(result)

    def get_tables(self, category: Optional[str] = None, include_row_counts: bool = False) -> Any:
        return self._call(
            "SELECT mcp_get_tables(p_category => :category, p_include_row_counts => :include_row_counts)",
            {"category": category, "include_row_counts": include_row_counts},
        )

    def get_fields(self, table_name: str, include_samples: bool = False, is_privileged: bool = False) -> Any:
        return self._call(
            "SELECT mcp_get_fields(p_table_name => :table_name, p_include_samples => :include_samples, "
            "p_admin_mode => :is_admin)",
            {"table_name": table_name, "include_samples": include_samples, "is_admin": is_privileged},
        )

    def get_table_joins(self, table_name: str) -> Any:
        return self._call(
            "SELECT mcp_get_table_joins(p_table_name => :table_name)",
            {"table_name": table_name},
        )

    def search_text(
        self,
        tenant_id: str,
        is_privileged: bool,
        query: str,
        match_type: str = "contains",
        limit: int = 50,
    ) -> Any:
        return self._call(
            "SELECT mcp_search_text(p_search_query => :query, p_customer_id => :customer_id, "
            "p_is_admin => :is_admin, p_match_type => :match_type, p_limit => :limit)",
            {
                "query": query,
                "customer_id": tenant_id,
                "is_admin": is_privileged,
                "match_type": match_type,
                "limit": limit,
            },
        )

    def query_table(
        self,
        tenant_id: str,
        is_privileged: bool,
        table_name: str,
        select: List[str],
        filters: List[Dict[str, Any]],
        group_by: List[str],
        aggregations: List[Dict[str, Any]],
        order_by: Optional[str] = None,
        order_dir: str = "desc",
        limit: int = 100,
    ) -> Any:
        return self._call(
            "SELECT mcp_query_table(p_table_name => :table_name, p_customer_id => :customer_id, "
            "p_is_admin => :is_admin, p_select => :select, p_filters => CAST(:filters AS jsonb), "
            "p_group_by => :group_by, p_aggregations => CAST(:aggregations AS jsonb), "
            "p_order_by => :order_by, p_order_dir => :order_dir, p_limit => :limit)",
            {
                "table_name": table_name,
                "customer_id": tenant_id,
                "is_admin": is_privileged,
                "select": select or ["*"],
                "filters": json.dumps(filters or []),
                "group_by": group_by or None,
                "aggregations": json.dumps(aggregations or []),
                "order_by": order_by,
                "order_dir": order_dir,
                "limit": limit,
            },
        )

    def query_with_join(
        self,
        tenant_id: str,
        is_privileged: bool,
        base_table: str,
        joins: List[Dict[str, Any]],
        select: List[str],
        filters: List[Dict[str, Any]],
        group_by: List[str],
        aggregations: List[Dict[str, Any]],
        order_by: Optional[str] = None,
        limit: int = 100,
    ) -> Any:
        return self._call(
            "SELECT mcp_query_with_join(p_base_table => :base_table, p_customer_id => :customer_id, "
            "p_is_admin => :is_admin, p_joins => CAST(:joins AS jsonb), p_select => :select, "
            "p_filters => CAST(:filters AS jsonb), p_group_by => :group_by, "
            "p_aggregations => CAST(:aggregations AS jsonb), p_order_by => :order_by, p_limit => :limit)",
            {
                "base_table": base_table,
                "customer_id": tenant_id,
                "is_admin": is_privileged,
                "joins": json.dumps(joins),
                "select": select or ["*"],
                "filters": json.dumps(filters or []),
                "group_by": group_by or None,
                "aggregations": json.dumps(aggregations or []),
                "order_by": order_by,
                "limit": limit,
            },
        )

    def aggregate(
        self,
        tenant_id: str,
        is_privileged: bool,
        table_name: str,
        group_by: str,
        metric: str,
        aggregation: str,
        filters: List[Dict[str, Any]],
        limit: int = 20,
    ) -> Any:
        return self._call(
            "SELECT mcp_aggregate(p_table_name => :table_name, p_customer_id => :customer_id, "
            "p_is_admin => :is_admin, p_group_by => :group_by, p_metric => :metric, "
            "p_aggregation => :aggregation, p_filters => CAST(:filters AS jsonb), p_limit => :limit)",
            {
                "table_name": table_name,
                "customer_id": tenant_id,
                "is_admin": is_privileged,
                "group_by": group_by,
                "metric": metric,
                "aggregation": aggregation,
                "filters": json.dumps(filters or []),
                "limit": limit,
            },
        )

    def get_lanes(self, tenant_id: str, limit: int = 20) -> Any:
        return self._call(
            "SELECT mcp_get_lanes(p_customer_id => :customer_id, p_limit => :limit)",
            {"customer_id": tenant_id, "limit": limit},
        )


data_service_client = DataServiceClient()

"""Tool registry: the fixed data-query catalog exposed to the model."""

from typing import Dict, List

from freight_assistant.models.tool import AGGREGATION_FUNCTIONS, FILTER_OPERATORS, ToolDefinition

_FILTERS_SCHEMA = {
    "type": "array",
    "description": "Row filters, combined with AND",
    "items": {
        "type": "object",
        "properties": {
            "field": {"type": "string"},
            "operator": {"type": "string", "enum": FILTER_OPERATORS},
            "value": {"description": "Comparison value; a list for in/not_in/between"},
        },
        "required": ["field", "operator"],
    },
}

_AGGREGATIONS_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "field": {"type": "string"},
            "function": {"type": "string", "enum": AGGREGATION_FUNCTIONS},
            "alias": {"type": "string"},
        },
        "required": ["field", "function"],
    },
}

_STRING_LIST = {"type": "array", "items": {"type": "string"}}


TOOL_CATALOG: List[ToolDefinition] = [
    ToolDefinition(
        name="discover_tables",
        description="List available database tables. Call first to see what data exists.",
        parameters_schema={
            "type": "object",
            "properties": {
                "category": {
                    "type": "string",
                    "enum": ["core", "reference", "analytics"],
                    "description": "Filter by category",
                },
                "include_row_counts": {"type": "boolean", "description": "Include row counts (slower)"},
            },
            "required": [],
        },
    ),
    ToolDefinition(
        name="discover_fields",
        description="Get all fields for a table with types, sample values and usage notes.",
        parameters_schema={
            "type": "object",
            "properties": {
                "table_name": {"type": "string", "description": "Table name (e.g. 'shipment', 'shipment_item')"},
                "include_samples": {"type": "boolean", "description": "Include sample values"},
            },
            "required": ["table_name"],
        },
    ),
    ToolDefinition(
        name="discover_joins",
        description="Get the known join paths from one table to related tables.",
        parameters_schema={
            "type": "object",
            "properties": {
                "table_name": {"type": "string", "description": "Table to find joins for"},
            },
            "required": ["table_name"],
        },
    ),
    ToolDefinition(
        name="search_text",
        description="Search for text across searchable columns. Returns where matches are found.",
        parameters_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Text to search for"},
                "match_type": {"type": "string", "enum": ["contains", "exact", "starts_with", "ends_with"]},
                "limit": {"type": "integer", "description": "Max matches (default 50)"},
            },
            "required": ["query"],
        },
    ),
    ToolDefinition(
        name="query_table",
        description=(
            "Query one table with filters, grouping and aggregation. "
            "Customer filtering is applied automatically."
        ),
        parameters_schema={
            "type": "object",
            "properties": {
                "table_name": {"type": "string", "description": "Table to query"},
                "select": {**_STRING_LIST, "description": "Fields to select"},
                "filters": _FILTERS_SCHEMA,
                "group_by": _STRING_LIST,
                "aggregations": _AGGREGATIONS_SCHEMA,
                "order_by": {"type": "string"},
                "order_dir": {"type": "string", "enum": ["asc", "desc"]},
                "limit": {"type": "integer", "description": "Max rows (default 100)"},
            },
            "required": ["table_name"],
        },
    ),
    ToolDefinition(
        name="query_with_join",
        description=(
            "Query across multiple tables with joins. Select the name columns of joined "
            "tables so results carry readable labels instead of raw ids."
        ),
        parameters_schema={
            "type": "object",
            "properties": {
                "base_table": {"type": "string", "description": "Primary table"},
                "joins": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "table": {"type": "string"},
                            "type": {"type": "string", "enum": ["left", "inner"]},
                            "on": {"type": "string", "description": "Custom join condition"},
                        },
                        "required": ["table"],
                    },
                },
                "select": _STRING_LIST,
                "filters": _FILTERS_SCHEMA,
                "group_by": _STRING_LIST,
                "aggregations": _AGGREGATIONS_SCHEMA,
                "order_by": {"type": "string"},
                "limit": {"type": "integer"},
            },
            "required": ["base_table", "joins"],
        },
    ),
    ToolDefinition(
        name="aggregate",
        description="Simple group-by aggregation of one metric on one table.",
        parameters_schema={
            "type": "object",
            "properties": {
                "table_name": {"type": "string"},
                "group_by": {"type": "string"},
                "metric": {"type": "string"},
                "aggregation": {"type": "string", "enum": AGGREGATION_FUNCTIONS},
                "filters": _FILTERS_SCHEMA,
                "limit": {"type": "integer", "description": "Max groups (default 20)"},
            },
            "required": ["table_name", "group_by", "metric", "aggregation"],
        },
    ),
    ToolDefinition(
        name="get_lanes",
        description="Top origin -> destination lanes by shipment count and spend for this customer.",
        parameters_schema={
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "Max lanes (default 20)"},
            },
            "required": [],
        },
    ),
]

TOOLS_BY_NAME: Dict[str, ToolDefinition] = {tool.name: tool for tool in TOOL_CATALOG}


def get_tool_catalog() -> List[ToolDefinition]:
    """Return the fixed tool catalog."""
    return list(TOOL_CATALOG)

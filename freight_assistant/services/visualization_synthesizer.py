"""Visualization synthesizer: infer a chart or stat from one tool result.

Pure functions of the tool name, its input and its result. Column choice is
heuristic: value and label columns are picked from fixed priority lists.
"""

import uuid
from numbers import Number
from typing import Any, Dict, List, Optional, Tuple

from freight_assistant.models.visualization import Visualization

MAX_BARS = 15

VALUE_COLUMN_PRIORITY = [
    "value", "total", "count", "sum", "avg",
    "total_cost", "total_spend", "total_retail",
    "shipment_count", "avg_cost", "avg_retail",
]

LABEL_COLUMN_PRIORITY = [
    "carrier_name", "mode_name", "equipment_name", "name",
    "state", "city", "mode", "status",
    "origin_state", "dest_state", "destination_state",
    "origin_city", "destination_city", "lane", "status_name",
    "customer_name", "month", "week", "period",
]

CURRENCY_KEYWORDS = [
    "cost", "retail", "spend", "price", "margin", "revenue",
    "amount", "charge", "fee", "invoice", "billed",
]

FIELD_LABELS = {
    "mode_name": "Mode",
    "equipment_name": "Equipment",
    "carrier_name": "Carrier",
    "customer_name": "Customer",
    "status_name": "Status",
    "origin_state": "Origin State",
    "dest_state": "Destination State",
    "destination_state": "Destination State",
    "origin_city": "Origin City",
    "destination_city": "Destination City",
    "retail": "Spend",
    "total_retail": "Total Spend",
    "total_spend": "Total Spend",
    "avg_retail": "Average Spend",
    "shipment_count": "Shipments",
    "miles": "Miles",
    "is_late": "Late",
}

AGGREGATION_VERBS = {
    "sum": "Total",
    "avg": "Average",
    "min": "Minimum",
    "max": "Maximum",
    "count": "Count of",
}


def format_field_name(field_name: str) -> str:
    """Display label for a raw column name."""
    if not field_name:
        return ""
    if field_name in FIELD_LABELS:
        return FIELD_LABELS[field_name]
    return " ".join(word.capitalize() for word in field_name.replace("_", " ").split())


def pluralize(word: str) -> str:
    if not word:
        return word
    lower = word.lower()
    if lower.endswith("y") and len(lower) > 1 and lower[-2] not in "aeiou":
        return word[:-1] + "ies"
    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def is_currency(*names: Optional[str]) -> bool:
    for name in names:
        if name and any(keyword in name.lower() for keyword in CURRENCY_KEYWORDS):
            return True
    return False


def _is_numeric(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def extract_rows(tool_result: Any) -> List[Dict[str, Any]]:
    """Return the row list carried by a tool result (empty if none)."""
    if not isinstance(tool_result, dict):
        return []
    for key in ("data", "rows", "results"):
        rows = tool_result.get(key)
        if isinstance(rows, list):
            return [row for row in rows if isinstance(row, dict)]
    return []


def pick_value_column(row: Dict[str, Any]) -> Optional[str]:
    for column in VALUE_COLUMN_PRIORITY:
        if column in row and _is_numeric(row[column]):
            return column
    for column, value in row.items():
        if _is_numeric(value):
            return column
    return None


def pick_label_column(row: Dict[str, Any], exclude: str) -> Optional[str]:
    for column in LABEL_COLUMN_PRIORITY:
        if column != exclude and column in row and row[column] is not None:
            return column
    for column, value in row.items():
        if column != exclude and isinstance(value, str):
            return column
    return None


def _metric_and_verb(tool_input: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Aggregation metric and function requested by the tool input, if any."""
    if tool_input.get("metric"):
        return tool_input.get("metric"), tool_input.get("aggregation")
    aggregations = tool_input.get("aggregations") or []
    if aggregations and isinstance(aggregations[0], dict):
        return aggregations[0].get("field"), aggregations[0].get("function")
    return None, None


def _group_by_field(tool_input: Dict[str, Any], tool_result: Dict[str, Any]) -> Optional[str]:
    """Grouping column named by the result or the tool input (first one if a list)."""
    group_by = tool_result.get("group_by") or tool_input.get("group_by")
    if isinstance(group_by, list):
        group_by = group_by[0] if group_by else None
    return group_by if isinstance(group_by, str) and group_by else None


def metric_title(tool_input: Dict[str, Any], value_column: str) -> str:
    """Title such as "Total Spend"; falls back to the value column label."""
    metric, aggregation = _metric_and_verb(tool_input)
    verb = AGGREGATION_VERBS.get((aggregation or "").lower())
    if metric and metric != "*" and verb:
        return f"{verb} {format_field_name(metric)}"
    return format_field_name(value_column)


def _lanes_visualization(rows: List[Dict[str, Any]]) -> Optional[Visualization]:
    by_spend = any(_is_numeric(row.get("total_spend")) for row in rows)
    value_key = "total_spend" if by_spend else "shipment_count"

    entries = []
    for row in rows:
        label = row.get("lane") or (
            f"{row.get('origin_city', '')}, {row.get('origin_state', '')} -> "
            f"{row.get('destination_city', '')}, {row.get('destination_state', '')}"
        )
        value = row.get(value_key)
        if _is_numeric(value):
            entries.append({"label": label, "value": value})
    if not entries:
        return None

    entries.sort(key=lambda e: e["value"], reverse=True)
    return Visualization(
        id=str(uuid.uuid4()),
        type="bar",
        title="Top Lanes by Spend" if by_spend else "Top Lanes by Shipments",
        subtitle=f"{len(rows)} lanes" if len(rows) != 1 else "1 lane",
        data=entries[:MAX_BARS],
        config={
            "layout": "horizontal",
            "format": "currency" if by_spend else "number",
            "metric": value_key,
            "dimension": "lane",
        },
    )


def synthesize(tool_name: str, tool_input: Dict[str, Any], tool_result: Any) -> Optional[Visualization]:
    """
    Derive at most one visualization from a tool result.

    Returns None when the result is unsuccessful, empty or has no usable
    value/label columns.
    """
    if not isinstance(tool_result, dict) or not tool_result.get("success"):
        return None
    rows = extract_rows(tool_result)
    if not rows:
        return None
    tool_input = tool_input or {}

    if tool_name == "get_lanes":
        return _lanes_visualization(rows)

    if len(rows) == 1:
        row = rows[0]
        value_column = pick_value_column(row)
        if value_column is None:
            return None
        metric, _ = _metric_and_verb(tool_input)
        return Visualization(
            id=str(uuid.uuid4()),
            type="stat",
            title=metric_title(tool_input, value_column),
            data={"value": row[value_column]},
            config={
                "format": "currency" if is_currency(metric, value_column) else "number",
                "metric": value_column,
            },
        )

    value_column = pick_value_column(rows[0])
    if value_column is None:
        return None
    label_column = pick_label_column(rows[0], exclude=value_column)
    if label_column is None:
        return None

    entries = [
        {"label": str(row.get(label_column)) if row.get(label_column) is not None else "Unknown",
         "value": row[value_column]}
        for row in rows
        if _is_numeric(row.get(value_column))
    ]
    if not entries:
        return None
    entries.sort(key=lambda e: e["value"], reverse=True)

    metric, _ = _metric_and_verb(tool_input)
    dimension_field = _group_by_field(tool_input, tool_result) or label_column
    dimension = format_field_name(dimension_field)
    row_count = len(rows)
    noun = pluralize(dimension) if row_count != 1 else dimension
    return Visualization(
        id=str(uuid.uuid4()),
        type="bar",
        title=f"{metric_title(tool_input, value_column)} by {dimension}",
        subtitle=f"{row_count} {noun.lower()}",
        data=entries[:MAX_BARS],
        config={
            "layout": "horizontal",
            "format": "currency" if is_currency(metric, value_column) else "number",
            "metric": value_column,
            "dimension": dimension_field,
        },
    )

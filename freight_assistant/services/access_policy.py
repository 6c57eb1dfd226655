"""Field-level access rules for restricted financial data."""

from typing import Any, Dict, Iterable, List

# Visible only to privileged (admin) users.
RESTRICTED_FIELDS = ["cost", "margin", "carrier_cost"]

# Customer-facing field that "cost"/"spend" language maps to.
CUSTOMER_PRICE_FIELD = "retail"


def is_restricted_field(name: Any) -> bool:
    """True if a column name refers to a restricted field (qualified or aliased forms included)."""
    if not isinstance(name, str):
        return False
    column = name.strip().lower().split(".")[-1]
    if column in RESTRICTED_FIELDS:
        return True
    # Aggregate aliases such as total_cost, avg_margin, sum_carrier_cost
    return any(column.endswith(f"_{field}") for field in RESTRICTED_FIELDS)


def drop_restricted(names: Iterable[str]) -> List[str]:
    return [name for name in names if not is_restricted_field(name)]


def strip_restricted_columns(rows: Any) -> Any:
    """Remove restricted columns from a list of row dicts."""
    if not isinstance(rows, list):
        return rows
    cleaned = []
    for row in rows:
        if isinstance(row, dict):
            cleaned.append({k: v for k, v in row.items() if not is_restricted_field(k)})
        else:
            cleaned.append(row)
    return cleaned


def strip_restricted_result(result: Dict[str, Any]) -> Dict[str, Any]:
    """Strip restricted columns from every row list carried by a tool result."""
    cleaned = dict(result)
    for key in ("data", "rows", "results"):
        if key in cleaned:
            cleaned[key] = strip_restricted_columns(cleaned[key])
    return cleaned

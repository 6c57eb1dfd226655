"""Tool definitions and per-tool validated input models."""

from dataclasses import dataclass, field
from pydantic import BaseModel, Field, field_validator
from typing import Dict, Any, List, Optional, Literal, Type, get_args

FilterOperator = Literal[
    "eq", "neq", "gt", "gte", "lt", "lte", "ilike", "like",
    "in", "not_in", "contains", "between", "is_null", "is_not_null",
]

AggregationFunction = Literal["sum", "avg", "min", "max", "count"]

FILTER_OPERATORS: List[str] = list(get_args(FilterOperator))
AGGREGATION_FUNCTIONS: List[str] = list(get_args(AggregationFunction))


class ToolDefinition(BaseModel):
    """Canonical tool definition exposed to the model."""
    name: str = Field(..., description="Canonical tool name")
    description: str = Field(..., description="Tool description")
    parameters_schema: Dict[str, Any] = Field(..., description="JSON Schema for parameters")


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


class QueryFilter(BaseModel):
    field: str
    operator: FilterOperator
    value: Any = None


class Aggregation(BaseModel):
    field: str
    function: AggregationFunction
    alias: Optional[str] = None


class JoinSpec(BaseModel):
    table: str
    type: Literal["left", "inner"] = "left"
    on: Optional[str] = None


class DiscoverTablesInput(BaseModel):
    category: Optional[Literal["core", "reference", "analytics"]] = None
    include_row_counts: bool = False


class DiscoverFieldsInput(BaseModel):
    table_name: str
    include_samples: bool = False


class DiscoverJoinsInput(BaseModel):
    table_name: str


class SearchTextInput(BaseModel):
    query: str
    match_type: Literal["contains", "exact", "starts_with", "ends_with"] = "contains"
    limit: int = Field(50, gt=0, le=500)


class QueryTableInput(BaseModel):
    table_name: str
    select: List[str] = Field(default_factory=lambda: ["*"])
    filters: List[QueryFilter] = Field(default_factory=list)
    group_by: List[str] = Field(default_factory=list)
    aggregations: List[Aggregation] = Field(default_factory=list)
    order_by: Optional[str] = None
    order_dir: Literal["asc", "desc"] = "desc"
    limit: int = Field(100, gt=0, le=1000)


class QueryWithJoinInput(BaseModel):
    base_table: str
    joins: List[JoinSpec]
    select: List[str] = Field(default_factory=lambda: ["*"])
    filters: List[QueryFilter] = Field(default_factory=list)
    group_by: List[str] = Field(default_factory=list)
    aggregations: List[Aggregation] = Field(default_factory=list)
    order_by: Optional[str] = None
    limit: int = Field(100, gt=0, le=1000)

    @field_validator("joins")
    @classmethod
    def joins_not_empty(cls, value: List[JoinSpec]) -> List[JoinSpec]:
        if not value:
            raise ValueError("joins must contain at least one table")
        return value


class AggregateInput(BaseModel):
    table_name: str
    group_by: str
    metric: str
    aggregation: AggregationFunction
    filters: List[QueryFilter] = Field(default_factory=list)
    limit: int = Field(20, gt=0, le=1000)


class GetLanesInput(BaseModel):
    limit: int = Field(20, gt=0, le=500)


TOOL_INPUT_MODELS: Dict[str, Type[BaseModel]] = {
    "discover_tables": DiscoverTablesInput,
    "discover_fields": DiscoverFieldsInput,
    "discover_joins": DiscoverJoinsInput,
    "search_text": SearchTextInput,
    "query_table": QueryTableInput,
    "query_with_join": QueryWithJoinInput,
    "aggregate": AggregateInput,
    "get_lanes": GetLanesInput,
}

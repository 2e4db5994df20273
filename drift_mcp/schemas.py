"""
Pydantic-модели входных параметров инструментов и DSL фильтров.

Фильтры только описывают форму запроса; вычисляет их удалённый API Tusk Drift.
Имена полей на проводе: camelCase (alias), в Python: snake_case.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel

JSON_PATH_PATTERN = r"^\$"

JsonbColumn = Literal["inputValue", "outputValue", "metadata", "status"]
CastType = Literal["text", "int", "float", "boolean"]
SortDirection = Literal["ASC", "DESC"]
GroupByField = Literal["name", "packageName", "instrumentationName", "environment", "statusCode"]
Metric = Literal[
    "count",
    "errorCount",
    "errorRate",
    "avgDuration",
    "minDuration",
    "maxDuration",
    "p50Duration",
    "p95Duration",
    "p99Duration",
]
Scalar = Union[str, float, bool, None]


class WireModel(BaseModel):
    """База: camelCase на проводе, snake_case в коде."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================
# Фильтры полей
# ============================================


class StringFilter(WireModel):
    eq: Optional[str] = None
    neq: Optional[str] = None
    in_: Optional[List[str]] = Field(default=None, alias="in")
    contains: Optional[str] = None
    starts_with: Optional[str] = None
    ends_with: Optional[str] = None


class NumberFilter(WireModel):
    eq: Optional[float] = None
    neq: Optional[float] = None
    gt: Optional[float] = None
    gte: Optional[float] = None
    lt: Optional[float] = None
    lte: Optional[float] = None


class BooleanFilter(WireModel):
    eq: bool


class JsonbFilter(WireModel):
    """Фильтр по JSON-пути внутри inputValue/outputValue/metadata/status."""

    column: JsonbColumn
    json_path: str = Field(pattern=JSON_PATH_PATTERN, description="JSONPath starting with $ (e.g. $.statusCode)")
    eq: Scalar = None
    neq: Scalar = None
    gt: Optional[float] = None
    gte: Optional[float] = None
    lt: Optional[float] = None
    lte: Optional[float] = None
    contains: Optional[str] = None
    starts_with: Optional[str] = None
    ends_with: Optional[str] = None
    is_null: Optional[bool] = None
    in_: Optional[List[Union[str, float]]] = Field(default=None, alias="in")
    cast_as: Optional[CastType] = None
    decode_base64: Optional[bool] = None
    then_path: Optional[str] = Field(
        default=None,
        pattern=JSON_PATH_PATTERN,
        description="JSONPath applied after base64 decoding",
    )

    @model_serializer(mode="wrap")
    def _keep_explicit_null(self, handler):
        # eq/neq: null, заданный явно, сравнивает значение с JSON null
        data = handler(self)
        for name in ("eq", "neq"):
            if name in self.model_fields_set and getattr(self, name) is None:
                data[name] = None
        return data


class SpanWhereClause(WireModel):
    """Рекурсивное условие: поля + AND/OR из вложенных условий."""

    name: Optional[StringFilter] = None
    package_name: Optional[StringFilter] = None
    instrumentation_name: Optional[StringFilter] = None
    environment: Optional[StringFilter] = None
    trace_id: Optional[StringFilter] = None
    span_id: Optional[StringFilter] = None
    duration: Optional[NumberFilter] = None
    is_root_span: Optional[BooleanFilter] = None
    and_: Optional[List["SpanWhereClause"]] = Field(default=None, alias="AND")
    or_: Optional[List["SpanWhereClause"]] = Field(default=None, alias="OR")


SpanWhereClause.model_rebuild()


class SpanOrderBy(WireModel):
    field: Literal["timestamp", "duration", "name"]
    direction: SortDirection


class MetricOrderBy(WireModel):
    metric: str
    direction: SortDirection


# ============================================
# Входные параметры инструментов
# ============================================


class ToolInput(WireModel):
    observable_service_id: Optional[str] = Field(
        default=None,
        description="Service ID to query. Required if multiple services are available.",
    )


class QuerySpansInput(ToolInput):
    where: Optional[SpanWhereClause] = Field(default=None, description="Filter conditions for spans")
    jsonb_filters: Optional[List[JsonbFilter]] = Field(
        default=None, description="Filters for JSONB columns (inputValue, outputValue, metadata)"
    )
    order_by: Optional[List[SpanOrderBy]] = Field(default=None, description="Order results")
    limit: int = Field(default=20, ge=1, le=100, description="Maximum results to return (1-100, default 20)")
    offset: int = Field(default=0, ge=0, description="Pagination offset")
    include_input_output: bool = Field(
        default=False, description="Include full inputValue/outputValue in results (can be verbose)"
    )
    max_payload_length: int = Field(default=500, ge=0, description="Truncate payload strings to this length")


class GetSchemaInput(ToolInput):
    package_name: Optional[str] = Field(
        default=None, description="Package name to get schema for (e.g., 'http', 'pg', 'fetch')"
    )
    instrumentation_name: Optional[str] = Field(default=None, description="Specific instrumentation name")
    name: Optional[str] = Field(default=None, description="Span name to get schema for (e.g., '/api/users')")
    show_example: bool = Field(default=True, description="Include an example span with real data")
    max_payload_length: int = Field(
        default=500, ge=0, description="Truncate example payload strings to this length"
    )


class ListDistinctValuesInput(ToolInput):
    field: str = Field(
        description=(
            "Field to get distinct values for. Can be a column name or JSONB path "
            "(e.g., 'name', 'packageName', 'outputValue.statusCode')"
        )
    )
    where: Optional[SpanWhereClause] = Field(default=None, description="Optional filter to scope the distinct values")
    jsonb_filters: Optional[List[JsonbFilter]] = Field(
        default=None, description="Optional JSONB filters to scope the distinct values"
    )
    limit: int = Field(default=50, ge=1, le=100, description="Maximum distinct values to return (default 50)")


class AggregateSpansInput(ToolInput):
    where: Optional[SpanWhereClause] = Field(default=None, description="Filter conditions (same as query_spans)")
    group_by: Optional[List[GroupByField]] = Field(default=None, description="Fields to group by")
    metrics: List[Metric] = Field(min_length=1, description="Metrics to calculate")
    time_bucket: Optional[Literal["hour", "day", "week"]] = Field(
        default=None, description="Time bucket for time-series data"
    )
    order_by: Optional[MetricOrderBy] = Field(default=None, description="Order results by a metric")
    limit: int = Field(default=20, ge=1, le=100, description="Maximum results to return")


class GetTraceInput(ToolInput):
    trace_id: str = Field(description="The trace ID to fetch")
    include_payloads: bool = Field(default=False, description="Include inputValue/outputValue (can be verbose)")
    max_payload_length: int = Field(default=500, ge=0, description="Truncate payload strings to this length")


class GetSpansByIdsInput(ToolInput):
    ids: List[str] = Field(min_length=1, max_length=20, description="Span recording IDs to fetch (max 20)")
    include_payloads: bool = Field(default=True, description="Include full inputValue/outputValue")
    max_payload_length: int = Field(default=500, ge=0, description="Truncate payload strings to this length")


def input_json_schema(model: type[BaseModel]) -> Dict[str, Any]:
    """JSON Schema инструмента с camelCase-именами полей."""
    return model.model_json_schema(by_alias=True)

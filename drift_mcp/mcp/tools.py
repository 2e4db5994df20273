"""
Инструменты MCP: описания (name, description, inputSchema) и выполнение.

Каждый инструмент = pydantic-модель входа + метод DriftDataProvider + форматтер.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional

from mcp.types import Tool

from drift_mcp.providers import DriftAccessControl, DriftDataProvider
from drift_mcp.schemas import (
    AggregateSpansInput,
    GetSchemaInput,
    GetSpansByIdsInput,
    GetTraceInput,
    ListDistinctValuesInput,
    QuerySpansInput,
    ToolInput,
    input_json_schema,
)
from drift_mcp.services import formatting

logger = logging.getLogger(__name__)

ACCESS_DENIED_MESSAGE = "Error: Access denied to observable service"


class ToolExecutionError(Exception):
    """Ошибка инструмента; текст уходит клиенту как результат с isError."""


class ToolSpec(NamedTuple):
    name: str
    description: str
    input_model: type[ToolInput]
    run: Callable[[DriftDataProvider, Any], Awaitable[str]]


async def _query_spans(provider: DriftDataProvider, params: QuerySpansInput) -> str:
    result = await provider.query_spans(params)
    return formatting.format_query_spans(result, params.include_input_output, params.offset)


async def _get_schema(provider: DriftDataProvider, params: GetSchemaInput) -> str:
    return formatting.format_schema(await provider.get_schema(params))


async def _list_distinct_values(provider: DriftDataProvider, params: ListDistinctValuesInput) -> str:
    return formatting.format_distinct_values(await provider.list_distinct_values(params))


async def _aggregate_spans(provider: DriftDataProvider, params: AggregateSpansInput) -> str:
    return formatting.format_aggregation(await provider.aggregate_spans(params))


async def _get_trace(provider: DriftDataProvider, params: GetTraceInput) -> str:
    result = await provider.get_trace(params)
    return formatting.format_trace(result, params.trace_id, params.include_payloads)


async def _get_spans_by_ids(provider: DriftDataProvider, params: GetSpansByIdsInput) -> str:
    result = await provider.get_spans_by_ids(params)
    return formatting.format_spans_by_ids(result, params.include_payloads)


TOOL_SPECS: List[ToolSpec] = [
    ToolSpec(
        "query_spans",
        """Search and filter API traffic span recordings.

Use this tool to:
- Find specific API calls by endpoint name, HTTP method, or status code
- Search for errors or slow requests
- Get recent traffic for a specific endpoint
- Debug specific API calls

Examples:
- Find failed requests: where.name = { contains: "/api/users" }, jsonbFilters = [{ column: "outputValue", jsonPath: "$.statusCode", gte: 400, castAs: "int" }]
- Find slow requests: where.duration = { gt: 1000 }
- Recent traffic for endpoint: where.name = { eq: "/api/orders" }, limit = 10, orderBy = [{ field: "timestamp", direction: "DESC" }]""",
        QuerySpansInput,
        _query_spans,
    ),
    ToolSpec(
        "get_schema",
        """Get schema and structure information for span recordings on Tusk Drift.

Use this tool to:
- Understand what fields are available for a specific instrumentation type
- See example payloads for HTTP requests, database queries, etc.
- Learn what to filter on before querying spans

Common package names:
- http: Incoming HTTP requests (has statusCode, method, url, headers)
- fetch: Outgoing HTTP calls
- pg: PostgreSQL queries (has db.statement, db.name)
- grpc: gRPC calls
- express: Express.js middleware spans""",
        GetSchemaInput,
        _get_schema,
    ),
    ToolSpec(
        "list_distinct_values",
        """List unique values for a field, ordered by frequency.

Use this tool to:
- Discover available endpoints (field: "name")
- See all instrumentation packages in use (field: "packageName")
- Find unique environments (field: "environment")
- Explore JSONB values like status codes (field: "outputValue.statusCode")

This helps you understand what values exist before building specific queries.""",
        ListDistinctValuesInput,
        _list_distinct_values,
    ),
    ToolSpec(
        "aggregate_spans",
        """Calculate aggregated metrics and statistics across spans.

Use this tool to:
- Get latency percentiles for endpoints (p50, p95, p99)
- Calculate error rates by endpoint
- Get request counts over time
- Compare performance across environments

Examples:
- Endpoint latency: groupBy = ["name"], metrics = ["count", "avgDuration", "p95Duration"]
- Error rates: groupBy = ["name"], metrics = ["count", "errorCount", "errorRate"]
- Hourly trends: timeBucket = "hour", metrics = ["count", "errorRate"]""",
        AggregateSpansInput,
        _aggregate_spans,
    ),
    ToolSpec(
        "get_trace",
        """Get all spans in a distributed trace as a hierarchical tree.

Use this tool to:
- Debug a specific request end-to-end
- See the full call chain from HTTP request to database queries
- Understand timing and dependencies between spans
- Identify bottlenecks in a request

First use query_spans to find spans, then use the traceId to get the full trace.""",
        GetTraceInput,
        _get_trace,
    ),
    ToolSpec(
        "get_spans_by_ids",
        """Fetch specific span recordings by their IDs.

Use this tool when you have span IDs from a previous query and need the full details including payloads.

This is useful for:
- Getting full details for spans found via query_spans
- Examining specific requests in detail
- Comparing multiple specific spans""",
        GetSpansByIdsInput,
        _get_spans_by_ids,
    ),
]

TOOLS_BY_NAME: Dict[str, ToolSpec] = {spec.name: spec for spec in TOOL_SPECS}


def list_tool_definitions() -> List[Tool]:
    """Описания инструментов для tools/list"""
    return [
        Tool(name=spec.name, description=spec.description, inputSchema=input_json_schema(spec.input_model))
        for spec in TOOL_SPECS
    ]


async def execute_tool(
    name: str,
    arguments: Optional[Dict[str, Any]],
    provider: DriftDataProvider,
    access_control: Optional[DriftAccessControl] = None,
) -> str:
    """
    Выполняет инструмент и возвращает текст ответа.

    Raises:
        ToolExecutionError: неизвестный инструмент, неверные аргументы,
            нет доступа, ошибка конфигурации или удалённого API
    """
    spec = TOOLS_BY_NAME.get(name)
    if spec is None:
        raise ToolExecutionError(f"Unknown tool: {name}")

    try:
        params = spec.input_model.model_validate(arguments or {})
    except ValueError as e:
        raise ToolExecutionError(f"Error executing {name}: invalid arguments: {e}") from e

    service_id = params.observable_service_id
    if service_id and access_control is not None:
        if not await access_control.can_access_service(service_id):
            logger.warning(f"Access denied: tool={name}, service={service_id}")
            raise ToolExecutionError(ACCESS_DENIED_MESSAGE)

    try:
        return await spec.run(provider, params)
    except Exception as e:
        logger.error(f"Error executing {name}: {e}", exc_info=True)
        raise ToolExecutionError(f"Error executing {name}: {e}") from e

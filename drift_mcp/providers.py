"""
Интерфейсы источника данных для MCP-сервера.

DriftDataProvider позволяет серверу работать как с HTTP API (локальный запуск),
так и с прямой интеграцией в бэкенд. Результаты: JSON-словари в формате API.
"""
from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable

from drift_mcp.schemas import (
    AggregateSpansInput,
    GetSchemaInput,
    GetSpansByIdsInput,
    GetTraceInput,
    ListDistinctValuesInput,
    QuerySpansInput,
)


@runtime_checkable
class DriftDataProvider(Protocol):
    async def query_spans(self, params: QuerySpansInput) -> Dict[str, Any]:
        """{"spans": [...], "total": int, "hasMore": bool}"""
        ...

    async def get_schema(self, params: GetSchemaInput) -> Dict[str, Any]:
        """{"inputSchema", "outputSchema", "exampleSpanRecording", "commonJsonbFields", "description"}"""
        ...

    async def list_distinct_values(self, params: ListDistinctValuesInput) -> Dict[str, Any]:
        """{"values": [{"value", "count"}], "field": str}"""
        ...

    async def aggregate_spans(self, params: AggregateSpansInput) -> Dict[str, Any]:
        """{"results": [{"groupValues", "timeBucket", "count", ...}]}"""
        ...

    async def get_trace(self, params: GetTraceInput) -> Dict[str, Any]:
        """{"traceTree": dict | None, "spanCount": int}"""
        ...

    async def get_spans_by_ids(self, params: GetSpansByIdsInput) -> Dict[str, Any]:
        """{"spans": [...]}"""
        ...


@runtime_checkable
class DriftAccessControl(Protocol):
    """Необязательная проверка прав перед выполнением запроса."""

    async def can_access_service(self, observable_service_id: str) -> bool:
        ...

"""Сервис для работы с Tusk Drift API"""
import logging
from typing import Any, Dict, Optional

import httpx

from drift_mcp.config import DEFAULT_API_TIMEOUT, DriftConfig
from drift_mcp.errors import ConfigurationError, UpstreamError
from drift_mcp.schemas import (
    AggregateSpansInput,
    GetSchemaInput,
    GetSpansByIdsInput,
    GetTraceInput,
    ListDistinctValuesInput,
    QuerySpansInput,
    ToolInput,
)
from drift_mcp.services.discovery import ServiceDiscoveryContext

logger = logging.getLogger(__name__)

QUERY_PATH = "/api/drift/query"


class DriftApiClient:
    """
    HTTP-клиент Tusk Drift API.

    Каждый метод подставляет observableServiceId через ServiceDiscoveryContext
    (явный id -> id по умолчанию -> единственный найденный сервис) и делает
    POST на {base_url}/api/drift/query/<endpoint>.
    """

    def __init__(
        self,
        api_base_url: str,
        api_token: str,
        service_context: Optional[ServiceDiscoveryContext] = None,
        timeout: float = DEFAULT_API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = api_base_url.rstrip("/")
        self.api_token = api_token
        self.service_context = service_context
        self.timeout = timeout
        # Подменяется в тестах (httpx.MockTransport)
        self._transport = transport

    @classmethod
    def from_config(cls, config: DriftConfig, service_context: Optional[ServiceDiscoveryContext] = None) -> "DriftApiClient":
        return cls(
            config.api_base_url,
            config.api_token,
            service_context=service_context,
            timeout=config.api_timeout,
        )

    def set_service_context(self, context: ServiceDiscoveryContext) -> None:
        self.service_context = context

    def resolve_service_id(self, provided: Optional[str] = None) -> str:
        if self.service_context is not None:
            return self.service_context.resolve_service_id(provided)
        if provided:
            return provided
        raise ConfigurationError(
            "No service ID provided and no service context configured. "
            "Set TUSK_DRIFT_SERVICE_ID or ensure a .tusk/config.yaml exists."
        )

    async def _request(self, endpoint: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{QUERY_PATH}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

        logger.debug(f"POST {url} service={body.get('observableServiceId')}")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(url, headers=headers, json=body)

        if response.is_error:
            raise UpstreamError(response.status_code, response.text)
        return response.json()

    async def _query(self, endpoint: str, params: ToolInput) -> Dict[str, Any]:
        body = params.to_wire()
        body["observableServiceId"] = self.resolve_service_id(params.observable_service_id)
        return await self._request(endpoint, body)

    async def query_spans(self, params: QuerySpansInput) -> Dict[str, Any]:
        """Поиск span-записей по фильтрам"""
        return await self._query("/spans", params)

    async def get_schema(self, params: GetSchemaInput) -> Dict[str, Any]:
        """Схема и пример span для инструментации"""
        return await self._query("/schema", params)

    async def get_spans_by_ids(self, params: GetSpansByIdsInput) -> Dict[str, Any]:
        return await self._query("/spans-by-id", params)

    async def list_distinct_values(self, params: ListDistinctValuesInput) -> Dict[str, Any]:
        """Уникальные значения поля, по убыванию частоты"""
        return await self._query("/distinct", params)

    async def aggregate_spans(self, params: AggregateSpansInput) -> Dict[str, Any]:
        """Агрегаты: count, error rate, перцентили длительности"""
        return await self._query("/aggregate", params)

    async def get_trace(self, params: GetTraceInput) -> Dict[str, Any]:
        """Все span трейса в виде дерева"""
        return await self._query("/trace", params)

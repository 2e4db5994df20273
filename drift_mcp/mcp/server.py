"""
MCP-сервер Tusk Drift: инструменты поверх DriftDataProvider и ресурс tusk://services.

Запуск:
    python -m drift_mcp.mcp.server                    # stdio (по умолчанию)
    python -m drift_mcp.mcp.server --transport http   # Streamable HTTP (FastAPI + uvicorn)
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

import anyio

from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool

from drift_mcp import __version__
from drift_mcp.config import LOG_FORMAT, DriftConfig, load_config
from drift_mcp.errors import ConfigurationError
from drift_mcp.mcp.tools import execute_tool, list_tool_definitions
from drift_mcp.providers import DriftAccessControl, DriftDataProvider
from drift_mcp.services.discovery import ServiceDiscoveryContext
from drift_mcp.services.drift_api import DriftApiClient

logger = logging.getLogger(__name__)

# Имя сервера для протокола MCP
SERVER_NAME = "tusk-drift-mcp"

SERVICES_URI = "tusk://services"

DEFAULT_INSTRUCTIONS = """Search and analyze API traffic span recordings from Tusk Drift.

This MCP server helps you query, analyze, and debug API traffic including:
- HTTP requests/responses, database queries, gRPC calls, and more
- Latency metrics and error rates
- Distributed traces across services

Workflow tips:
- Start with list_distinct_values to discover available endpoints
- Use query_spans to find specific API calls
- Use get_trace to debug a request's full call chain

Root cause analysis workflow:
If the user is investigating performance issues or errors, you can consider the following workflow:
1. Use query_spans or aggregate_spans to identify the problematic endpoint/span
2. Use get_trace to see the full call chain and identify which child span is the bottleneck
3. Look at the span's metadata (inputValue/outputValue) to understand the request context
4. Navigate to the relevant source code using the span name (usually maps to route handlers or functions)
5. Analyze the code path to understand the root cause (if you have access to the service's source code)
"""


def generate_instructions(context: Optional[ServiceDiscoveryContext]) -> str:
    """Инструкции для клиента + описание найденных сервисов"""
    if context is None:
        return DEFAULT_INSTRUCTIONS
    return f"{DEFAULT_INSTRUCTIONS}\n\n{context.get_services_description()}"


def services_json(context: Optional[ServiceDiscoveryContext]) -> str:
    """Содержимое ресурса tusk://services"""
    services = context.services if context is not None else ()
    payload = {
        "services": [
            {"id": s.id, "name": s.name, "rootPath": s.root_path}
            for s in services
        ],
        "defaultServiceId": context.default_service_id if context is not None else None,
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def create_server(
    provider: DriftDataProvider,
    context: Optional[ServiceDiscoveryContext] = None,
    access_control: Optional[DriftAccessControl] = None,
    instructions: Optional[str] = None,
    name: str = SERVER_NAME,
    version: str = __version__,
) -> Server:
    """Создаёт MCP-сервер с шестью инструментами Tusk Drift и ресурсом сервисов."""
    server = Server(
        name=name,
        version=version,
        instructions=instructions if instructions is not None else generate_instructions(context),
    )

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        return list_tool_definitions()

    @server.call_tool()
    async def call_tool(tool_name: str, arguments: dict) -> List[TextContent]:
        # ToolExecutionError превращается SDK в результат с isError=True
        text = await execute_tool(tool_name, arguments, provider, access_control)
        return [TextContent(type="text", text=text)]

    @server.list_resources()
    async def list_resources() -> List[Resource]:
        return [
            Resource(
                uri=SERVICES_URI,
                name="services",
                description="List of available Tusk Drift services that can be queried",
                mimeType="application/json",
            )
        ]

    @server.read_resource()
    async def read_resource(uri) -> List[ReadResourceContents]:
        if str(uri).rstrip("/") != SERVICES_URI:
            raise ValueError(f"Unknown resource: {uri}")
        return [ReadResourceContents(content=services_json(context), mime_type="application/json")]

    return server


async def build_context(config: DriftConfig) -> ServiceDiscoveryContext:
    """Контекст сервисов: id из конфигурации + сканирование рабочих каталогов."""
    context = ServiceDiscoveryContext(
        default_service_id=config.observable_service_id,
        max_depth=config.discovery_max_depth,
    )
    await context.discover(config.workspace_roots)
    if not context.has_services():
        logger.warning(
            "No Tusk services found. Set TUSK_DRIFT_SERVICE_ID or ensure .tusk/config.yaml exists in workspace."
        )
    return context


async def run_stdio(config: DriftConfig) -> None:
    """Одна сессия поверх stdio (stdin/stdout)."""
    context = await build_context(config)
    client = DriftApiClient.from_config(config, service_context=context)
    server = create_server(client, context)

    logger.info("Tusk Drift MCP server started (stdio)")
    logger.info(f"API URL: {config.api_base_url}")
    logger.info(context.get_services_description())

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def run_http(config: DriftConfig) -> None:
    """Streamable HTTP: FastAPI-приложение под uvicorn."""
    import uvicorn

    from drift_mcp.main import create_app

    logger.info(f"Tusk Drift MCP server listening on http://{config.http_host}:{config.http_port}/mcp")
    uvicorn.run(
        create_app(config),
        host=config.http_host,
        port=config.http_port,
        log_level=config.log_level.lower(),
    )


def run_server(argv: Optional[List[str]] = None) -> None:
    """Точка входа (console script drift-mcp)."""
    parser = argparse.ArgumentParser(description="Tusk Drift MCP server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        help="Транспорт MCP (по умолчанию MCP_TRANSPORT или stdio)",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ConfigurationError as e:
        logging.basicConfig(format=LOG_FORMAT, stream=sys.stderr)
        logger.error(str(e))
        sys.exit(1)

    # stdout занят протоколом MCP, логи только в stderr
    logging.basicConfig(
        level=config.log_level.upper(),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    transport = args.transport or config.transport
    if transport == "http":
        run_http(config)
    else:
        anyio.run(run_stdio, config, backend="asyncio")


if __name__ == "__main__":
    run_server()

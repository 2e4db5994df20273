"""Главный файл приложения FastAPI: MCP Streamable HTTP на /mcp и health check"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER

from drift_mcp.config import DriftConfig, load_config
from drift_mcp.mcp.http import StreamableHttpHandlers
from drift_mcp.mcp.server import build_context, create_server
from drift_mcp.routers import health
from drift_mcp.services.discovery import ServiceDiscoveryContext
from drift_mcp.services.drift_api import DriftApiClient

logger = logging.getLogger(__name__)


def create_app(config: Optional[DriftConfig] = None) -> FastAPI:
    """
    Собирает FastAPI-приложение.

    Discovery выполняется при старте (lifespan); там же запускается task group
    сессий MCP. Для uvicorn без аргументов: `uvicorn --factory drift_mcp.main:create_app`.
    """
    config = config or load_config()
    client = DriftApiClient.from_config(config)

    handlers = StreamableHttpHandlers(
        server_factory=lambda: create_server(client, app.state.service_context),
        json_response=config.json_response,
        session_idle_timeout=config.session_idle_timeout,
        reap_interval=config.session_reap_interval,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context = await build_context(config)
        client.set_service_context(context)
        app.state.service_context = context
        logger.info(context.get_services_description())

        async with handlers.run():
            yield
        logger.info("MCP sessions closed")

    app = FastAPI(title="Tusk Drift MCP", lifespan=lifespan)
    app.state.config = config
    app.state.handlers = handlers
    # До lifespan: пустой контекст с id из конфигурации
    app.state.service_context = ServiceDiscoveryContext(default_service_id=config.observable_service_id)

    # Настройка CORS: браузерным клиентам нужен заголовок сессии
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
        expose_headers=[MCP_SESSION_ID_HEADER],
    )

    app.add_route("/mcp", handlers, methods=["GET", "POST", "DELETE"])
    app.include_router(health.router)

    return app

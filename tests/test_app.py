"""Тесты FastAPI-приложения: health check, маршрут /mcp, точка входа"""
import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from drift_mcp.config import load_config
from drift_mcp.main import create_app
from drift_mcp.mcp.server import (
    DEFAULT_INSTRUCTIONS,
    create_server,
    generate_instructions,
    run_server,
    services_json,
)
from drift_mcp.services.discovery import DiscoveredService, ServiceDiscoveryContext
from drift_mcp.services.drift_api import DriftApiClient


def make_workspace(tmp_path):
    config_dir = tmp_path / "api" / ".tusk"
    config_dir.mkdir(parents=True)
    (config_dir / "config.yaml").write_text('service:\n  id: "svc-api"\n  name: api\n', encoding="utf-8")
    return tmp_path


class TestHealth:
    """Тесты /api/health"""

    def test_health_after_discovery(self, tmp_path):
        """Тест: health показывает найденные при старте сервисы"""
        config = load_config({
            "TUSK_API_KEY": "key",
            "TUSK_WORKSPACE_ROOTS": str(make_workspace(tmp_path)),
            "MCP_SESSION_IDLE_TIMEOUT": "0",
        })

        with TestClient(create_app(config)) as client:
            response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["api_key_configured"] is True
        assert data["sessions"] == 0
        assert [s["id"] for s in data["services"]] == ["svc-api"]
        assert data["default_service_id"] is None

    def test_mcp_route_requires_session_for_get(self, tmp_path):
        """Тест: GET /mcp без сессии -> 400"""
        config = load_config({"TUSK_API_KEY": "key", "TUSK_WORKSPACE_ROOTS": str(tmp_path)})

        with TestClient(create_app(config)) as client:
            response = client.get("/mcp")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid or missing session ID"}


class TestServerFactory:
    """Тесты сборки MCP-сервера"""

    def test_instructions_include_services(self):
        """Тест: инструкции = базовый текст + описание сервисов"""
        context = ServiceDiscoveryContext("svc-default")
        text = generate_instructions(context)

        assert text.startswith(DEFAULT_INSTRUCTIONS)
        assert text.endswith("Using configured service: svc-default")
        assert generate_instructions(None) == DEFAULT_INSTRUCTIONS

    def test_services_json(self):
        """Тест: содержимое ресурса tusk://services"""
        context = ServiceDiscoveryContext("svc-default")
        context._services = (
            DiscoveredService(id="svc-1", name="api", config_path="/w/api/.tusk/config.yaml", root_path="/w/api"),
        )
        data = json.loads(services_json(context))

        assert data == {
            "services": [{"id": "svc-1", "name": "api", "rootPath": "/w/api"}],
            "defaultServiceId": "svc-default",
        }

    def test_create_server(self):
        """Тест: имя, версия и инструкции сервера"""
        client = DriftApiClient("https://api.example.com", "token")
        server = create_server(client, instructions="custom", name="drift-test", version="9.9.9")

        assert server.name == "drift-test"
        assert server.version == "9.9.9"
        assert server.instructions == "custom"


class TestRunServer:
    """Тесты точки входа"""

    def test_missing_api_key_exits(self, monkeypatch):
        """Тест: без TUSK_API_KEY процесс завершается с кодом 1"""
        monkeypatch.delenv("TUSK_API_KEY", raising=False)

        with pytest.raises(SystemExit) as exc_info:
            run_server([])
        assert exc_info.value.code == 1

    def test_transport_selection(self, monkeypatch):
        """Тест: --transport http запускает HTTP, по умолчанию stdio"""
        monkeypatch.setenv("TUSK_API_KEY", "key")
        monkeypatch.delenv("MCP_TRANSPORT", raising=False)

        with patch("drift_mcp.mcp.server.run_http") as mock_http, \
             patch("drift_mcp.mcp.server.anyio.run") as mock_anyio_run:
            run_server(["--transport", "http"])
            mock_http.assert_called_once()
            mock_anyio_run.assert_not_called()

            run_server([])
            mock_anyio_run.assert_called_once()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

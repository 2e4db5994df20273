"""Тесты протокола сессий MCP Streamable HTTP (POST / GET / DELETE)"""
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import MagicMock

import anyio
import httpx
import pytest

# Настройка pytest-asyncio
pytest_plugins = ('pytest_asyncio',)

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from mcp.types import LATEST_PROTOCOL_VERSION

from drift_mcp.mcp.http import StreamableHttpHandlers
from drift_mcp.mcp.server import create_server
from drift_mcp.mcp.sessions import McpSessionManager
from drift_mcp.services.discovery import ServiceDiscoveryContext

SESSION_HEADER = "mcp-session-id"


class FakeTransport:
    """Транспорт-заглушка: отвечает 200 с session id (или 400) и ждёт terminate()"""

    def __init__(self, session_id, initialize_ok=True):
        self.mcp_session_id = session_id
        self.initialize_ok = initialize_ok
        self.fail_with = None
        self.fail_after_start = False
        self.requests = []
        self.terminated = False
        self.closed = anyio.Event()

    async def handle_request(self, scope, receive, send):
        self.requests.append(scope["method"])
        if self.fail_with is not None and not self.fail_after_start:
            raise self.fail_with

        status = 200 if self.initialize_ok else 400
        headers = [(b"content-type", b"application/json")]
        if self.initialize_ok:
            headers.append((SESSION_HEADER.encode(), self.mcp_session_id.encode()))
        await send({"type": "http.response.start", "status": status, "headers": headers})
        if self.fail_with is not None:
            raise self.fail_with
        await send({"type": "http.response.body", "body": b"{}"})

    async def terminate(self):
        self.terminated = True
        self.closed.set()

    @asynccontextmanager
    async def connect(self):
        yield self.closed, None


class FakeServer:
    """Сервер-заглушка: работает, пока транспорт не закрыт"""

    def create_initialization_options(self):
        return None

    async def run(self, read_stream, write_stream, options):
        await read_stream.wait()


class TransportFactory:
    def __init__(self, initialize_ok=True):
        self.initialize_ok = initialize_ok
        self.created = []

    def __call__(self, session_id):
        transport = FakeTransport(session_id, self.initialize_ok)
        self.created.append(transport)
        return transport


def make_handlers(factory=None, **kwargs):
    kwargs.setdefault("session_idle_timeout", 0)
    handlers = StreamableHttpHandlers(
        server_factory=FakeServer,
        transport_factory=factory or TransportFactory(),
        on_session_created=MagicMock(),
        on_session_closed=MagicMock(),
        on_error=MagicMock(),
        **kwargs,
    )
    return handlers


def http_client(handlers):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=handlers), base_url="http://testserver")


async def wait_until(predicate, timeout=2.0):
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.01)


class TestInitiation:
    """Тесты создания сессии"""

    @pytest.mark.asyncio
    async def test_post_without_session_creates_session(self):
        """Тест: POST без session id создаёт сессию и регистрирует её после ответа"""
        factory = TransportFactory()
        handlers = make_handlers(factory)

        async with handlers.run():
            async with http_client(handlers) as client:
                response = await client.post("/mcp", json={})

            assert response.status_code == 200
            session_id = response.headers[SESSION_HEADER]
            assert handlers.session_manager.has(session_id)
            assert handlers.session_manager.get(session_id) is factory.created[0]
            handlers.on_session_created.assert_called_once_with(session_id)

    @pytest.mark.asyncio
    async def test_two_initiations_get_distinct_sessions(self):
        """Тест: две инициализации -> разные id и разные транспорты"""
        factory = TransportFactory()
        handlers = make_handlers(factory)

        async with handlers.run():
            async with http_client(handlers) as client:
                first = await client.post("/mcp", json={})
                second = await client.post("/mcp", json={})

            id1 = first.headers[SESSION_HEADER]
            id2 = second.headers[SESSION_HEADER]
            assert id1 != id2
            assert handlers.session_manager.get(id1) is not handlers.session_manager.get(id2)
            assert sorted(handlers.session_manager.list_session_ids()) == sorted([id1, id2])

    @pytest.mark.asyncio
    async def test_failed_initialization_leaves_no_entry(self):
        """Тест: неуспешная инициализация не оставляет записи, транспорт закрыт"""
        factory = TransportFactory(initialize_ok=False)
        handlers = make_handlers(factory)

        async with handlers.run():
            async with http_client(handlers) as client:
                response = await client.post("/mcp", json={})

            assert response.status_code == 400
            assert len(handlers.session_manager) == 0
            assert factory.created[0].terminated
            handlers.on_session_created.assert_not_called()

        handlers.on_session_closed.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_session_id_starts_new_session(self):
        """Тест: POST с неизвестным id обрабатывается как инициализация"""
        handlers = make_handlers()

        async with handlers.run():
            async with http_client(handlers) as client:
                response = await client.post("/mcp", json={}, headers={SESSION_HEADER: "stale"})

            session_id = response.headers[SESSION_HEADER]
            assert session_id != "stale"
            assert handlers.session_manager.has(session_id)
            assert not handlers.session_manager.has("stale")

    @pytest.mark.asyncio
    async def test_async_server_factory(self):
        """Тест: фабрика сервера может быть корутиной"""
        async def server_factory():
            return FakeServer()

        handlers = StreamableHttpHandlers(
            server_factory=server_factory,
            transport_factory=TransportFactory(),
            session_idle_timeout=0,
        )

        async with handlers.run():
            async with http_client(handlers) as client:
                response = await client.post("/mcp", json={})
            assert handlers.session_manager.has(response.headers[SESSION_HEADER])

    @pytest.mark.asyncio
    async def test_initiation_requires_run(self):
        """Тест: без run() инициализация -> 500, реестр пуст"""
        handlers = make_handlers()

        async with http_client(handlers) as client:
            response = await client.post("/mcp", json={})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert len(handlers.session_manager) == 0
        handlers.on_error.assert_called_once()


class TestContinuation:
    """Тесты повторных запросов в сессии"""

    @pytest.mark.asyncio
    async def test_known_session_reuses_transport(self):
        """Тест: POST с известным id идёт в тот же транспорт"""
        factory = TransportFactory()
        handlers = make_handlers(factory)

        async with handlers.run():
            async with http_client(handlers) as client:
                first = await client.post("/mcp", json={})
                session_id = first.headers[SESSION_HEADER]
                transport = handlers.session_manager.get(session_id)

                second = await client.post("/mcp", json={}, headers={SESSION_HEADER: session_id})

            assert second.status_code == 200
            assert len(factory.created) == 1
            assert transport.requests == ["POST", "POST"]
            assert handlers.session_manager.get(session_id) is transport

    @pytest.mark.asyncio
    async def test_get_known_session(self):
        """Тест: GET с известным id отдаётся транспорту сессии"""
        handlers = make_handlers()

        async with handlers.run():
            async with http_client(handlers) as client:
                session_id = (await client.post("/mcp", json={})).headers[SESSION_HEADER]
                response = await client.get("/mcp", headers={SESSION_HEADER: session_id})

            assert response.status_code == 200
            assert handlers.session_manager.get(session_id).requests == ["POST", "GET"]

    @pytest.mark.asyncio
    async def test_get_unknown_session_rejected(self):
        """Тест: GET с неизвестным id -> 400, реестр не меняется"""
        handlers = make_handlers()

        async with handlers.run():
            async with http_client(handlers) as client:
                response = await client.get("/mcp", headers={SESSION_HEADER: "ghost"})
                missing = await client.get("/mcp")

            assert response.status_code == 400
            assert response.json() == {"error": "Invalid or missing session ID"}
            assert missing.status_code == 400
            assert not handlers.session_manager.has("ghost")
            assert len(handlers.session_manager) == 0

    @pytest.mark.asyncio
    async def test_method_not_allowed(self):
        """Тест: PUT -> 405"""
        handlers = make_handlers()

        async with http_client(handlers) as client:
            response = await client.put("/mcp", json={})

        assert response.status_code == 405


class TestTermination:
    """Тесты DELETE и закрытия сессий"""

    @pytest.mark.asyncio
    async def test_delete_known_session(self):
        """Тест: DELETE закрывает транспорт и удаляет запись, колбэк один раз"""
        handlers = make_handlers()

        async with handlers.run():
            async with http_client(handlers) as client:
                session_id = (await client.post("/mcp", json={})).headers[SESSION_HEADER]
                transport = handlers.session_manager.get(session_id)

                response = await client.delete("/mcp", headers={SESSION_HEADER: session_id})

            assert response.status_code == 204
            assert transport.terminated
            assert not handlers.session_manager.has(session_id)

        handlers.on_session_closed.assert_called_once_with(session_id)

    @pytest.mark.asyncio
    async def test_delete_unknown_session_is_noop(self):
        """Тест: DELETE неизвестного id -> 204 без побочных эффектов"""
        handlers = make_handlers()

        async with handlers.run():
            async with http_client(handlers) as client:
                response = await client.delete("/mcp", headers={SESSION_HEADER: "ghost"})

        assert response.status_code == 204
        handlers.on_session_closed.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_without_session_id(self):
        """Тест: DELETE без заголовка -> 400"""
        handlers = make_handlers()

        async with http_client(handlers) as client:
            response = await client.delete("/mcp")

        assert response.status_code == 400
        assert response.json() == {"error": "Missing session ID"}

    @pytest.mark.asyncio
    async def test_transport_close_removes_session(self):
        """Тест: закрытие транспорта извне убирает сессию, колбэк один раз"""
        handlers = make_handlers()

        async with handlers.run():
            async with http_client(handlers) as client:
                session_id = (await client.post("/mcp", json={})).headers[SESSION_HEADER]

            handlers.session_manager.get(session_id).closed.set()
            await wait_until(lambda: not handlers.session_manager.has(session_id))

        handlers.on_session_closed.assert_called_once_with(session_id)

    @pytest.mark.asyncio
    async def test_shutdown_closes_all_sessions(self):
        """Тест: выход из run() закрывает все сессии"""
        factory = TransportFactory()
        handlers = make_handlers(factory)

        async with handlers.run():
            async with http_client(handlers) as client:
                await client.post("/mcp", json={})
                await client.post("/mcp", json={})

        assert len(handlers.session_manager) == 0
        assert all(t.terminated for t in factory.created)
        assert handlers.on_session_closed.call_count == 2


class TestErrorBoundary:
    """Тесты обработки исключений транспорта"""

    @pytest.mark.asyncio
    async def test_exception_before_response(self):
        """Тест: исключение до ответа -> 500, сессия сохраняется"""
        handlers = make_handlers()

        async with handlers.run():
            async with http_client(handlers) as client:
                session_id = (await client.post("/mcp", json={})).headers[SESSION_HEADER]
                transport = handlers.session_manager.get(session_id)
                transport.fail_with = RuntimeError("boom")

                response = await client.post("/mcp", json={}, headers={SESSION_HEADER: session_id})

            assert response.status_code == 500
            assert response.json() == {"error": "Internal server error"}
            assert handlers.session_manager.get(session_id) is transport
            handlers.on_error.assert_called_once()
            assert str(handlers.on_error.call_args[0][0]) == "boom"

    @pytest.mark.asyncio
    async def test_exception_after_response_started(self):
        """Тест: исключение после начала ответа логируется, тело ответа закрывается"""
        handlers = make_handlers()

        async with handlers.run():
            async with http_client(handlers) as client:
                session_id = (await client.post("/mcp", json={})).headers[SESSION_HEADER]
                transport = handlers.session_manager.get(session_id)
                transport.fail_with = RuntimeError("late")
                transport.fail_after_start = True

                response = await client.post("/mcp", json={}, headers={SESSION_HEADER: session_id})

            assert response.status_code == 200
            assert response.content == b""
            assert handlers.session_manager.has(session_id)
            handlers.on_error.assert_called_once()


class TestIdleExpiry:
    """Тесты закрытия простаивающих сессий"""

    @pytest.mark.asyncio
    async def test_reap_idle_sessions(self):
        """Тест: сессии без активности дольше таймаута закрываются"""
        clock = MagicMock(return_value=1000.0)
        manager = McpSessionManager(clock=clock)
        handlers = make_handlers(session_manager=manager)
        handlers.session_idle_timeout = 60

        async with handlers.run():
            async with http_client(handlers) as client:
                idle_id = (await client.post("/mcp", json={})).headers[SESSION_HEADER]
                clock.return_value = 1050.0
                active_id = (await client.post("/mcp", json={})).headers[SESSION_HEADER]
                idle_transport = manager.get(idle_id)

                clock.return_value = 1070.0
                reaped = await handlers.reap_idle_sessions()

            assert reaped == [idle_id]
            assert idle_transport.terminated
            assert not manager.has(idle_id)
            assert manager.has(active_id)
            handlers.on_session_closed.assert_called_once_with(idle_id)

    @pytest.mark.asyncio
    async def test_reaper_loop(self):
        """Тест: фоновая очистка срабатывает сама"""
        handlers = make_handlers(session_idle_timeout=0.05, reap_interval=0.02)

        async with handlers.run():
            async with http_client(handlers) as client:
                session_id = (await client.post("/mcp", json={})).headers[SESSION_HEADER]

            await wait_until(lambda: not handlers.session_manager.has(session_id))

        handlers.on_session_closed.assert_called_once_with(session_id)


class FakeProvider:
    """Провайдер данных для сквозного теста"""

    async def query_spans(self, params):
        return {
            "spans": [
                {
                    "id": "span-1",
                    "name": "GET /api/users",
                    "traceId": "trace-1",
                    "packageName": "http",
                    "duration": 12.5,
                    "status": {"code": 0},
                    "timestamp": "2024-01-01T00:00:00Z",
                }
            ],
            "total": 1,
            "hasMore": False,
        }

    async def get_schema(self, params):
        return {}

    async def list_distinct_values(self, params):
        return {"field": params.field, "values": []}

    async def aggregate_spans(self, params):
        return {"results": []}

    async def get_trace(self, params):
        return {}

    async def get_spans_by_ids(self, params):
        return {"spans": []}


class TestEndToEnd:
    """Сквозной тест с настоящим транспортом MCP SDK (JSON-ответы)"""

    @pytest.mark.asyncio
    async def test_full_session(self):
        """Тест: initialize -> tools/list -> tools/call -> resources/read -> DELETE"""
        context = ServiceDiscoveryContext(default_service_id="svc-default")
        handlers = StreamableHttpHandlers(
            server_factory=lambda: create_server(FakeProvider(), context),
            json_response=True,
            session_idle_timeout=0,
        )
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
        }

        async with handlers.run():
            async with http_client(handlers) as client:
                response = await client.post(
                    "/mcp",
                    headers=headers,
                    json={
                        "jsonrpc": "2.0",
                        "id": 1,
                        "method": "initialize",
                        "params": {
                            "protocolVersion": LATEST_PROTOCOL_VERSION,
                            "capabilities": {},
                            "clientInfo": {"name": "test-client", "version": "0.0.1"},
                        },
                    },
                )
                assert response.status_code == 200
                session_id = response.headers[SESSION_HEADER]
                assert handlers.session_manager.has(session_id)
                assert response.json()["result"]["serverInfo"]["name"] == "tusk-drift-mcp"

                session_headers = {
                    **headers,
                    SESSION_HEADER: session_id,
                    "mcp-protocol-version": LATEST_PROTOCOL_VERSION,
                }
                response = await client.post(
                    "/mcp",
                    headers=session_headers,
                    json={"jsonrpc": "2.0", "method": "notifications/initialized"},
                )
                assert response.status_code == 202

                response = await client.post(
                    "/mcp",
                    headers=session_headers,
                    json={"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
                )
                names = [tool["name"] for tool in response.json()["result"]["tools"]]
                assert names == [
                    "query_spans",
                    "get_schema",
                    "list_distinct_values",
                    "aggregate_spans",
                    "get_trace",
                    "get_spans_by_ids",
                ]

                response = await client.post(
                    "/mcp",
                    headers=session_headers,
                    json={
                        "jsonrpc": "2.0",
                        "id": 3,
                        "method": "tools/call",
                        "params": {"name": "query_spans", "arguments": {"limit": 5}},
                    },
                )
                result = response.json()["result"]
                assert not result.get("isError")
                assert "Found 1 spans (showing 1)" in result["content"][0]["text"]

                response = await client.post(
                    "/mcp",
                    headers=session_headers,
                    json={
                        "jsonrpc": "2.0",
                        "id": 4,
                        "method": "resources/read",
                        "params": {"uri": "tusk://services"},
                    },
                )
                contents = response.json()["result"]["contents"][0]
                assert '"defaultServiceId": "svc-default"' in contents["text"]

                response = await client.delete("/mcp", headers={SESSION_HEADER: session_id})
                assert response.status_code == 204
                assert not handlers.session_manager.has(session_id)

    @pytest.mark.asyncio
    async def test_initialize_with_stale_session_id(self):
        """Тест: initialize с id от прошлого процесса создаёт новую сессию"""
        context = ServiceDiscoveryContext(default_service_id="svc-default")
        handlers = StreamableHttpHandlers(
            server_factory=lambda: create_server(FakeProvider(), context),
            json_response=True,
            session_idle_timeout=0,
        )
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
            SESSION_HEADER: "stale-id-from-previous-process",
        }

        async with handlers.run():
            async with http_client(handlers) as client:
                response = await client.post(
                    "/mcp",
                    headers=headers,
                    json={
                        "jsonrpc": "2.0",
                        "id": 1,
                        "method": "initialize",
                        "params": {
                            "protocolVersion": LATEST_PROTOCOL_VERSION,
                            "capabilities": {},
                            "clientInfo": {"name": "test-client", "version": "0.0.1"},
                        },
                    },
                )

                assert response.status_code == 200
                session_id = response.headers[SESSION_HEADER]
                assert session_id != "stale-id-from-previous-process"
                assert handlers.session_manager.has(session_id)
                assert not handlers.session_manager.has("stale-id-from-previous-process")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
MCP поверх Streamable HTTP: обработчики POST / GET / DELETE с сессиями.

POST без session id (или с неизвестным) создаёт новый транспорт и новый
MCP-сервер; сессия попадает в реестр только когда транспорт успешно ответил
на initialize. POST с известным id переиспользует транспорт. GET (SSE-поток)
требует уже созданную сессию. DELETE закрывает сессию.

Серверы сессий работают в task group, которую держит StreamableHttpHandlers.run().
"""
from __future__ import annotations

import inspect
import logging
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
    Protocol,
    Tuple,
    Union,
)
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup
from fastapi.responses import JSONResponse, Response
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from starlette.datastructures import Headers
from starlette.types import Message, Receive, Scope, Send

from drift_mcp.config import DEFAULT_SESSION_IDLE_TIMEOUT, DEFAULT_SESSION_REAP_INTERVAL
from drift_mcp.errors import TransportError
from drift_mcp.mcp.sessions import McpSessionManager

logger = logging.getLogger(__name__)

ASGIHandler = Callable[[Scope, Receive, Send], Awaitable[None]]
ServerFactory = Callable[[], Union[Server, Awaitable[Server]]]


class SessionTransport(Protocol):
    """То, что нужно от транспорта (реализует StreamableHTTPServerTransport)."""

    mcp_session_id: Optional[str]

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        ...

    async def terminate(self) -> None:
        ...

    def connect(self) -> AsyncContextManager[Tuple[Any, Any]]:
        ...


def _request_session_id(scope: Scope) -> Optional[str]:
    return Headers(scope=scope).get(MCP_SESSION_ID_HEADER) or None


def _response_session_id(message: Message) -> Optional[str]:
    for name, value in message.get("headers") or []:
        if name.decode("latin-1").lower() == MCP_SESSION_ID_HEADER:
            return value.decode("latin-1")
    return None


def _without_session_header(scope: Scope) -> Scope:
    """Копия scope без mcp-session-id: новый транспорт не должен видеть чужой id."""
    header = MCP_SESSION_ID_HEADER.encode("latin-1")
    headers = [(name, value) for name, value in scope.get("headers") or [] if name.lower() != header]
    return {**scope, "headers": headers}


def _error_response(message: str, status_code: int) -> Response:
    return JSONResponse({"error": message}, status_code=status_code)


class StreamableHttpHandlers:
    """
    Обработчики HTTP-запросов MCP с сессиями.

    Использование:
        handlers = StreamableHttpHandlers(lambda: create_server(client, context))
        async with handlers.run():
            ...  # handlers: ASGI-приложение для маршрута /mcp
    """

    def __init__(
        self,
        server_factory: ServerFactory,
        session_manager: Optional[McpSessionManager] = None,
        on_session_created: Optional[Callable[[str], None]] = None,
        on_session_closed: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        transport_factory: Optional[Callable[[str], SessionTransport]] = None,
        json_response: bool = False,
        session_idle_timeout: float = DEFAULT_SESSION_IDLE_TIMEOUT,
        reap_interval: float = DEFAULT_SESSION_REAP_INTERVAL,
        session_id_generator: Optional[Callable[[], str]] = None,
    ):
        self.server_factory = server_factory
        self.session_manager = session_manager if session_manager is not None else McpSessionManager()
        self.on_session_created = on_session_created
        self.on_session_closed = on_session_closed
        self.on_error = on_error
        self.json_response = json_response
        self.session_idle_timeout = session_idle_timeout
        self.reap_interval = reap_interval
        self._transport_factory = transport_factory or self._sdk_transport
        self._generate_session_id = session_id_generator or (lambda: uuid4().hex)
        self._task_group: Optional[TaskGroup] = None

    def _sdk_transport(self, session_id: str) -> SessionTransport:
        return StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=self.json_response,
        )

    # ------------------------------------------------------------------
    # Жизненный цикл
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def run(self) -> AsyncIterator["StreamableHttpHandlers"]:
        """Task group для серверов сессий и фоновой очистки простаивающих сессий."""
        if self._task_group is not None:
            raise RuntimeError("StreamableHttpHandlers.run() is already active")

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            if self.session_idle_timeout > 0:
                tg.start_soon(self._reap_loop)
            try:
                yield self
            finally:
                with anyio.CancelScope(shield=True):
                    await self.close_all()
                self._task_group = None
                tg.cancel_scope.cancel()

    async def close_all(self) -> None:
        """Закрывает все сессии (остановка процесса)."""
        for session_id in self.session_manager.list_session_ids():
            try:
                await self.terminate_session(session_id)
            except Exception as e:
                logger.error(f"Error closing MCP session {session_id}: {e}", exc_info=True)
        self.session_manager.clear()

    async def terminate_session(self, session_id: str) -> bool:
        """Закрывает транспорт и удаляет сессию. False: сессии не было."""
        transport = self.session_manager.get(session_id)
        if transport is None:
            return False
        try:
            await transport.terminate()
        finally:
            self._session_closed(session_id, transport)
        return True

    async def reap_idle_sessions(self) -> List[str]:
        """Закрывает сессии, простаивающие дольше session_idle_timeout."""
        reaped = []
        for session_id in self.session_manager.idle_session_ids(self.session_idle_timeout):
            if await self.terminate_session(session_id):
                logger.info(f"Closed idle MCP session: {session_id}")
                reaped.append(session_id)
        return reaped

    async def _reap_loop(self) -> None:
        while True:
            await anyio.sleep(self.reap_interval)
            try:
                await self.reap_idle_sessions()
            except Exception as e:
                logger.error(f"Idle session cleanup failed: {e}", exc_info=True)

    def _session_closed(self, session_id: Optional[str], transport: SessionTransport) -> None:
        # Срабатывает и из DELETE, и из завершения сервера: колбэк один раз
        if not session_id or self.session_manager.get(session_id) is not transport:
            return
        if self.session_manager.delete(session_id):
            logger.info(f"MCP session closed: {session_id}")
            self._notify(self.on_session_closed, session_id)

    def _notify(self, callback: Optional[Callable[[Any], None]], arg: Any) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception as e:
            logger.error(f"MCP session callback failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # ASGI
    # ------------------------------------------------------------------

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        method = scope.get("method", "")
        if method == "POST":
            await self.handle_post(scope, receive, send)
        elif method == "GET":
            await self.handle_get(scope, receive, send)
        elif method == "DELETE":
            await self.handle_delete(scope, receive, send)
        else:
            response = JSONResponse(
                {"error": "Method not allowed"},
                status_code=405,
                headers={"Allow": "GET, POST, DELETE"},
            )
            await response(scope, receive, send)

    async def handle_post(self, scope: Scope, receive: Receive, send: Send) -> None:
        """POST: сообщения MCP (initialize создаёт сессию)"""
        await self._guarded(self._post, scope, receive, send)

    async def handle_get(self, scope: Scope, receive: Receive, send: Send) -> None:
        """GET: SSE-поток уже созданной сессии"""
        await self._guarded(self._get, scope, receive, send)

    async def handle_delete(self, scope: Scope, receive: Receive, send: Send) -> None:
        """DELETE: завершение сессии"""
        await self._guarded(self._delete, scope, receive, send)

    async def _guarded(self, handler: ASGIHandler, scope: Scope, receive: Receive, send: Send) -> None:
        """Граница обработчика: ошибки не выходят наружу и не портят реестр."""
        response_started = False
        response_complete = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started, response_complete
            if message["type"] == "http.response.start":
                response_started = True
            elif message["type"] == "http.response.body" and not message.get("more_body", False):
                response_complete = True
            await send(message)

        try:
            await handler(scope, receive, tracking_send)
        except TransportError as e:
            logger.warning(f"MCP transport error ({e.status_code}): {e.message}")
            if not response_started:
                await _error_response(e.message, e.status_code)(scope, receive, send)
        except Exception as e:
            logger.error(f"Error handling MCP request: {e}", exc_info=True)
            self._notify(self.on_error, e)
            if not response_started:
                await _error_response("Internal server error", 500)(scope, receive, send)
            elif not response_complete:
                # Ответ уже начат: завершаем тело, чтобы клиент не ждал
                await send({"type": "http.response.body", "body": b"", "more_body": False})

    async def _post(self, scope: Scope, receive: Receive, send: Send) -> None:
        session_id = _request_session_id(scope)
        transport = self.session_manager.get(session_id) if session_id else None
        if transport is not None:
            self.session_manager.touch(session_id)
            await transport.handle_request(scope, receive, send)
            return
        await self._initiate(scope, receive, send)

    async def _get(self, scope: Scope, receive: Receive, send: Send) -> None:
        session_id = _request_session_id(scope)
        transport = self.session_manager.get(session_id) if session_id else None
        if transport is None:
            raise TransportError("Invalid or missing session ID", 400)
        self.session_manager.touch(session_id)
        await transport.handle_request(scope, receive, send)

    async def _delete(self, scope: Scope, receive: Receive, send: Send) -> None:
        session_id = _request_session_id(scope)
        if not session_id:
            raise TransportError("Missing session ID", 400)
        # Неизвестный id тоже получает 204, повторное завершение ничего не ломает
        await self.terminate_session(session_id)
        await Response(status_code=204)(scope, receive, send)

    # ------------------------------------------------------------------
    # Создание сессии
    # ------------------------------------------------------------------

    async def _create_server(self) -> Server:
        server = self.server_factory()
        if inspect.isawaitable(server):
            server = await server
        return server

    async def _initiate(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self._task_group is None:
            raise RuntimeError("Session task group is not running; enter StreamableHttpHandlers.run() first")

        session_id = self._generate_session_id()
        transport = self._transport_factory(session_id)
        server = await self._create_server()
        await self._task_group.start(self._run_session, server, transport)

        initialized = False

        async def send_and_register(message: Message) -> None:
            nonlocal initialized
            if (
                not initialized
                and message["type"] == "http.response.start"
                and message["status"] < 400
                and _response_session_id(message) == session_id
            ):
                # Без await между проверкой и записью в реестр
                self.session_manager.set(session_id, transport)
                initialized = True
                logger.info(f"MCP session created: {session_id}")
                self._notify(self.on_session_created, session_id)
            await send(message)

        try:
            await transport.handle_request(_without_session_header(scope), receive, send_and_register)
        finally:
            if not initialized:
                with anyio.CancelScope(shield=True):
                    await transport.terminate()

    async def _run_session(
        self,
        server: Server,
        transport: SessionTransport,
        *,
        task_status: anyio.abc.TaskStatus = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        session_id = transport.mcp_session_id
        try:
            async with transport.connect() as (read_stream, write_stream):
                task_status.started()
                await server.run(read_stream, write_stream, server.create_initialization_options())
        except Exception as e:
            logger.error(f"MCP session {session_id} crashed: {e}", exc_info=True)
            self._notify(self.on_error, e)
        finally:
            self._session_closed(session_id, transport)

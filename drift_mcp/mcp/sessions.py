"""
Реестр MCP-сессий: session id -> транспорт Streamable HTTP.

Менять реестр можно только через методы McpSessionManager; словарь наружу
не отдаётся. Кроме транспорта хранится время последней активности, по
которому StreamableHttpHandlers закрывает брошенные сессии.
"""
from __future__ import annotations

import time
from typing import Callable, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class McpSessionManager(Generic[T]):
    """Активные транспорты по session id"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._transports: Dict[str, T] = {}
        self._last_activity: Dict[str, float] = {}
        self._clock = clock

    def get(self, session_id: str) -> Optional[T]:
        return self._transports.get(session_id)

    def set(self, session_id: str, transport: T) -> None:
        """Устанавливает (или заменяет) транспорт сессии."""
        self._transports[session_id] = transport
        self._last_activity[session_id] = self._clock()

    def delete(self, session_id: str) -> bool:
        """Удаляет сессию. True: если она была в реестре."""
        self._last_activity.pop(session_id, None)
        return self._transports.pop(session_id, None) is not None

    def has(self, session_id: str) -> bool:
        return session_id in self._transports

    def list_session_ids(self) -> List[str]:
        return list(self._transports)

    def clear(self) -> None:
        """Забывает все сессии, транспорты не закрывает (только при остановке)."""
        self._transports.clear()
        self._last_activity.clear()

    def touch(self, session_id: str) -> None:
        if session_id in self._transports:
            self._last_activity[session_id] = self._clock()

    def idle_session_ids(self, max_idle: float) -> List[str]:
        """Сессии без активности дольше max_idle секунд."""
        now = self._clock()
        return [sid for sid, seen in self._last_activity.items() if now - seen > max_idle]

    def __len__(self) -> int:
        return len(self._transports)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._transports

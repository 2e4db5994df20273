"""
Исключения drift-mcp.

Иерархия:
    DriftMcpError (база)
    ├── ConfigurationError (не задан / неоднозначен сервис, битая конфигурация)
    ├── DiscoveryError (ошибка чтения .tusk/config.yaml, наружу не выходит)
    ├── TransportError (нарушения протокола сессий: нет/неизвестен session id)
    └── UpstreamError (удалённый API вернул не-2xx)
"""
from __future__ import annotations


class DriftMcpError(Exception):
    """Базовое исключение для всех ошибок drift-mcp."""


class ConfigurationError(DriftMcpError, ValueError):
    """Не удалось определить сервис или прочитать конфигурацию процесса."""


class DiscoveryError(DriftMcpError, OSError):
    """Конфиг сервиса не прочитан. Поглощается при сканировании."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read service config {path}: {reason}")


class TransportError(DriftMcpError):
    """Ошибка протокола сессий, отдаётся клиенту как 4xx."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class UpstreamError(DriftMcpError):
    """Удалённый API Tusk Drift ответил ошибкой."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"API request failed ({status_code}): {body}")

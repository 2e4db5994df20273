"""Конфигурация приложения"""
import os
from typing import List, Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from drift_mcp.errors import ConfigurationError

load_dotenv()

# Tusk Drift API настройки
DEFAULT_API_URL = "https://api.usetusk.ai"
DEFAULT_API_TIMEOUT = 60.0

# Поиск .tusk/config.yaml: глубина обхода от каждого корня workspace
DEFAULT_DISCOVERY_MAX_DEPTH = 3

# MCP транспорт: stdio для локального запуска, http: Streamable HTTP за uvicorn
DEFAULT_HTTP_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 8000
# Сессии без активности дольше этого времени закрываются (0: не закрывать)
DEFAULT_SESSION_IDLE_TIMEOUT = 1800.0
DEFAULT_SESSION_REAP_INTERVAL = 60.0

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class DriftConfig(BaseModel):
    """Настройки процесса, собранные из окружения (и .env)."""

    api_base_url: str = DEFAULT_API_URL
    api_token: str
    observable_service_id: Optional[str] = None
    workspace_roots: List[str] = Field(default_factory=list)
    discovery_max_depth: int = Field(default=DEFAULT_DISCOVERY_MAX_DEPTH, ge=0)
    api_timeout: float = Field(default=DEFAULT_API_TIMEOUT, gt=0)
    transport: Literal["stdio", "http"] = "stdio"
    http_host: str = DEFAULT_HTTP_HOST
    http_port: int = DEFAULT_HTTP_PORT
    json_response: bool = False
    session_idle_timeout: float = DEFAULT_SESSION_IDLE_TIMEOUT
    session_reap_interval: float = Field(default=DEFAULT_SESSION_REAP_INTERVAL, gt=0)
    log_level: str = "INFO"


def _parse_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _parse_roots(raw: Optional[str]) -> List[str]:
    """TUSK_WORKSPACE_ROOTS: пути через запятую; по умолчанию текущая директория."""
    if not raw:
        return [os.getcwd()]
    roots = [root.strip() for root in raw.split(",")]
    return [root for root in roots if root] or [os.getcwd()]


def load_config(env: Optional[Mapping[str, str]] = None) -> DriftConfig:
    """
    Собирает DriftConfig из переменных окружения.

    Args:
        env: Словарь переменных (по умолчанию os.environ)

    Returns:
        Проверенная конфигурация

    Raises:
        ConfigurationError: если TUSK_API_KEY не задан или число указано неверно
    """
    env = os.environ if env is None else env

    api_token = env.get("TUSK_API_KEY")
    if not api_token:
        raise ConfigurationError("TUSK_API_KEY environment variable is required")

    transport = (env.get("MCP_TRANSPORT") or "stdio").strip().lower()
    if transport not in ("stdio", "http"):
        raise ConfigurationError(f"MCP_TRANSPORT must be 'stdio' or 'http', got {transport!r}")

    try:
        return DriftConfig(
            api_base_url=env.get("TUSK_DRIFT_API_URL") or DEFAULT_API_URL,
            api_token=api_token,
            observable_service_id=env.get("TUSK_DRIFT_SERVICE_ID") or None,
            workspace_roots=_parse_roots(env.get("TUSK_WORKSPACE_ROOTS")),
            discovery_max_depth=_parse_number(env, "TUSK_DISCOVERY_MAX_DEPTH", DEFAULT_DISCOVERY_MAX_DEPTH, int),
            api_timeout=_parse_number(env, "TUSK_DRIFT_API_TIMEOUT", DEFAULT_API_TIMEOUT, float),
            transport=transport,
            http_host=env.get("MCP_HTTP_HOST") or DEFAULT_HTTP_HOST,
            http_port=_parse_number(env, "MCP_HTTP_PORT", DEFAULT_HTTP_PORT, int),
            json_response=(env.get("MCP_JSON_RESPONSE", "false").lower() == "true"),
            session_idle_timeout=_parse_number(env, "MCP_SESSION_IDLE_TIMEOUT", DEFAULT_SESSION_IDLE_TIMEOUT, float),
            session_reap_interval=_parse_number(env, "MCP_SESSION_REAP_INTERVAL", DEFAULT_SESSION_REAP_INTERVAL, float),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

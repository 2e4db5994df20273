"""
Поиск сервисов Tusk в локальном workspace и выбор service id для запроса.

Сервис описывается файлом <dir>/.tusk/config.yaml с секцией service: (id, name).
Контекст ServiceDiscoveryContext создаётся один раз на процесс и передаётся
явно тем, кому нужен resolve_service_id (API-клиент, MCP-сервер, health).
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Sequence

import anyio
from pydantic import BaseModel, ConfigDict

from drift_mcp.config import DEFAULT_DISCOVERY_MAX_DEPTH
from drift_mcp.errors import ConfigurationError, DiscoveryError

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".tusk"
CONFIG_FILE_NAME = "config.yaml"

# Каталоги менеджеров зависимостей, в которые не спускаемся (скрытые пропускаются всегда)
DEFAULT_SKIP_DIRS = frozenset({"node_modules", "__pycache__", "venv", "site-packages"})

# Упрощённый разбор без YAML-парсера: ищем id/name после строки "service:".
#   service:
#     id: "xxx"
#     name: 'yyy'
_ID_RE = re.compile(r"service:\s*\n(?:[^\n]*\n)*?\s*id:\s*[\"']?([^\"'\n]+)[\"']?")
_NAME_RE = re.compile(r"service:\s*\n(?:[^\n]*\n)*?\s*name:\s*[\"']?([^\"'\n]+)[\"']?")


class DiscoveredService(BaseModel):
    """Сервис, найденный по файлу .tusk/config.yaml"""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    config_path: str
    root_path: str


def _clean_value(match: Optional[re.Match]) -> Optional[str]:
    if not match:
        return None
    value = match.group(1)
    # Хвостовой комментарий: id: abc  # prod
    value = re.split(r"\s+#", value, maxsplit=1)[0]
    return value.strip() or None


def parse_service_config(content: str) -> dict:
    """
    Извлекает id и name из текста config.yaml.

    Разбор намеренно нестрогий: на кривом файле просто не находим полей,
    исключений не бросаем.

    Returns:
        Словарь {"id": str | None, "name": str | None}
    """
    return {
        "id": _clean_value(_ID_RE.search(content)),
        "name": _clean_value(_NAME_RE.search(content)),
    }


async def read_service_config(config_path: anyio.Path) -> dict:
    """Читает и разбирает конфиг. Ошибки чтения -> DiscoveryError."""
    try:
        content = await config_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DiscoveryError(str(config_path), str(e))
    return parse_service_config(content)


async def _canonical(path: anyio.Path) -> anyio.Path:
    try:
        return await path.resolve()
    except (OSError, RuntimeError):
        return path


async def find_service_configs(
    roots: Iterable[str],
    max_depth: int = DEFAULT_DISCOVERY_MAX_DEPTH,
    stop_on_match: bool = True,
    skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS,
) -> list[DiscoveredService]:
    """
    Обходит каждый корень на глубину max_depth и собирает найденные сервисы.

    Args:
        roots: Корни workspace в порядке обхода
        max_depth: Максимальная глубина (корень: уровень 0)
        stop_on_match: Не спускаться ниже каталога, в котором найден конфиг
        skip_dirs: Имена каталогов, которые не обходим

    Returns:
        Список DiscoveredService в порядке обнаружения
    """
    skip = frozenset(skip_dirs)
    services: list[DiscoveredService] = []
    visited: set[str] = set()

    async def search(directory: anyio.Path, depth: int) -> None:
        key = str(directory)
        if depth > max_depth or key in visited:
            return
        visited.add(key)

        config_path = directory / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        try:
            has_config = await config_path.is_file()
        except OSError as e:
            logger.debug(f"Cannot check {config_path}: {e}")
            has_config = False
        if has_config:
            try:
                parsed = await read_service_config(config_path)
            except DiscoveryError as e:
                logger.debug(f"Skipping unreadable config: {e}")
                parsed = {}
            if parsed.get("id"):
                services.append(
                    DiscoveredService(
                        id=parsed["id"],
                        name=parsed.get("name") or directory.name,
                        config_path=str(config_path),
                        root_path=key,
                    )
                )
            if stop_on_match:
                return

        try:
            children = [entry async for entry in directory.iterdir()]
        except OSError as e:
            # Нет прав / каталог исчез: просто пропускаем
            logger.debug(f"Cannot list {directory}: {e}")
            return

        for child in sorted(children, key=lambda p: p.name):
            if child.name.startswith(".") or child.name in skip:
                continue
            try:
                if not await child.is_dir():
                    continue
            except OSError:
                continue
            await search(await _canonical(child), depth + 1)

    for root in roots:
        await search(await _canonical(anyio.Path(root)), 0)

    return services


class ServiceDiscoveryContext:
    """
    Найденные сервисы + service id по умолчанию (из TUSK_DRIFT_SERVICE_ID).

    Приоритет выбора сервиса в resolve_service_id:
    1. Явно переданный id
    2. Значение по умолчанию из конфигурации
    3. Единственный найденный сервис
    4. Иначе ConfigurationError
    """

    def __init__(
        self,
        default_service_id: Optional[str] = None,
        max_depth: int = DEFAULT_DISCOVERY_MAX_DEPTH,
        stop_on_match: bool = True,
        skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS,
    ):
        self.default_service_id = default_service_id or None
        self.max_depth = max_depth
        self.stop_on_match = stop_on_match
        self.skip_dirs = frozenset(skip_dirs)
        self._services: tuple[DiscoveredService, ...] = ()

    @property
    def services(self) -> tuple[DiscoveredService, ...]:
        """Снимок результата последнего сканирования."""
        return self._services

    async def discover(self, roots: Sequence[str]) -> None:
        """Сканирует корни workspace и целиком заменяет список сервисов."""
        found = await find_service_configs(
            roots,
            max_depth=self.max_depth,
            stop_on_match=self.stop_on_match,
            skip_dirs=self.skip_dirs,
        )
        self._services = tuple(found)
        logger.info(f"Discovered {len(found)} Tusk service(s) in {', '.join(map(str, roots)) or '(no roots)'}")
        for service in found:
            logger.info(f"  - {service.name} ({service.id})")

    def resolve_service_id(self, provided: Optional[str] = None) -> str:
        if provided:
            return provided

        if self.default_service_id:
            return self.default_service_id

        services = self._services
        if len(services) == 1:
            return services[0].id

        if not services:
            raise ConfigurationError(
                "No Tusk service configured. Either set TUSK_DRIFT_SERVICE_ID "
                "(or pass observableServiceId) or ensure a .tusk/config.yaml exists in your workspace."
            )

        service_list = "\n".join(f'  - "{s.name}" (id: {s.id})' for s in services)
        raise ConfigurationError(
            f"Multiple Tusk services found. Please specify observableServiceId:\n{service_list}"
        )

    def has_services(self) -> bool:
        return bool(self.default_service_id) or len(self._services) > 0

    def get_services_description(self) -> str:
        """Текст о доступных сервисах для инструкций ассистенту."""
        services = self._services
        if not services:
            if self.default_service_id:
                return f"Using configured service: {self.default_service_id}"
            return "No services discovered."

        if len(services) == 1:
            s = services[0]
            return f'Using service: "{s.name}" (id: {s.id}, path: {s.root_path})'

        service_list = "\n".join(f'- "{s.name}" (id: {s.id}, path: {s.root_path})' for s in services)
        return f"Multiple services available. Specify observableServiceId when querying:\n{service_list}"

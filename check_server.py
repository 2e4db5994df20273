#!/usr/bin/env python3
"""
Скрипт для проверки окружения перед запуском MCP-сервера
"""
import os
import socket
import sys

import anyio

from drift_mcp.config import DEFAULT_DISCOVERY_MAX_DEPTH, DEFAULT_HTTP_PORT
from drift_mcp.services.discovery import ServiceDiscoveryContext


def check_env():
    """Проверка переменных окружения"""
    print("🔍 Проверка переменных окружения...")
    api_key = os.getenv("TUSK_API_KEY")
    if api_key:
        print(f"✅ TUSK_API_KEY установлен (длина: {len(api_key)})")
        return True
    else:
        print("❌ TUSK_API_KEY не установлен")
        print("   Создайте файл .env с содержимым: TUSK_API_KEY=ваш-ключ")
        return False


def check_dependencies():
    """Проверка зависимостей"""
    print("\n🔍 Проверка зависимостей...")
    try:
        import fastapi
        import httpx
        import mcp
        import uvicorn
        print("✅ Все необходимые Python пакеты установлены")
        return True
    except ImportError as e:
        print(f"❌ Отсутствует пакет: {e.name}")
        print("   Установите зависимости: pip install -e .")
        return False


def check_services(roots=None):
    """Поиск .tusk/config.yaml в рабочих каталогах"""
    print("\n🔍 Поиск сервисов Tusk...")
    if roots is None:
        raw = os.getenv("TUSK_WORKSPACE_ROOTS")
        roots = [r.strip() for r in raw.split(",") if r.strip()] if raw else [os.getcwd()]

    context = ServiceDiscoveryContext(
        default_service_id=os.getenv("TUSK_DRIFT_SERVICE_ID"),
        max_depth=int(os.getenv("TUSK_DISCOVERY_MAX_DEPTH") or DEFAULT_DISCOVERY_MAX_DEPTH),
    )
    anyio.run(context.discover, roots)

    if context.has_services():
        print(f"✅ {context.get_services_description()}")
        return True
    else:
        print("❌ Сервисы не найдены")
        print("   Задайте TUSK_DRIFT_SERVICE_ID или добавьте .tusk/config.yaml в проект")
        return False


def check_port(port=DEFAULT_HTTP_PORT):
    """Проверка доступности порта"""
    print(f"\n🔍 Проверка порта {port}...")
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    result = sock.connect_ex(('127.0.0.1', port))
    sock.close()
    if result == 0:
        print(f"⚠️  Порт {port} занят (HTTP-транспорт уже запущен?)")
    else:
        print(f"✅ Порт {port} свободен")
    return True  # Это не ошибка, просто информация


def main():
    print("=" * 50)
    print("Проверка окружения Tusk Drift MCP")
    print("=" * 50)

    checks = [
        check_env(),
        check_dependencies(),
        check_services(),
        check_port()
    ]

    print("\n" + "=" * 50)
    if all(checks):
        print("✅ Все проверки пройдены успешно!")
        sys.exit(0)
    else:
        print("❌ Некоторые проверки не пройдены")
        print("\nРекомендации:")
        print("1. Убедитесь, что .env файл существует с TUSK_API_KEY")
        print("2. Установите зависимости: pip install -e .")
        print("3. Запустите сервер: drift-mcp --transport http")
        sys.exit(1)


if __name__ == "__main__":
    main()

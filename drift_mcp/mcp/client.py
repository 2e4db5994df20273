"""
MCP-клиент для проверки сервера: подключается по stdio (запускает сервер
как subprocess) или по Streamable HTTP, вызывает list_tools() и выводит
имя + первую строку описания каждого инструмента.

    python -m drift_mcp.mcp.client
    python -m drift_mcp.mcp.client --url http://127.0.0.1:8000/mcp
"""
import argparse
import asyncio
import os
import sys
from typing import Iterable, Optional

# Официальный MCP SDK
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import Tool


def format_tools(tools: Iterable[Tool]) -> str:
    """Текстовый список инструментов: '  - name: первая строка описания'."""
    lines = ["MCP tools (name + description):", ""]
    for tool in tools:
        desc = (tool.description or "(no description)").strip().splitlines()[0]
        lines.append(f"  - {tool.name}: {desc}")
    return "\n".join(lines)


async def _list_tools(session: ClientSession) -> str:
    await session.initialize()
    result = await session.list_tools()
    return format_tools(result.tools)


async def list_tools_stdio() -> str:
    """Запуск MCP-сервера как subprocess и list_tools()"""
    server_params = StdioServerParameters(
        command=sys.executable,
        args=["-m", "drift_mcp.mcp.server", "--transport", "stdio"],
        env=os.environ.copy(),
    )
    async with stdio_client(server_params) as (read, write):
        async with ClientSession(read, write) as session:
            return await _list_tools(session)


async def list_tools_http(url: str) -> str:
    """list_tools() у запущенного HTTP-сервера"""
    async with streamablehttp_client(url) as (read, write, _get_session_id):
        async with ClientSession(read, write) as session:
            return await _list_tools(session)


def main(argv: Optional[list] = None) -> None:
    """Точка входа для запуска из командной строки."""
    parser = argparse.ArgumentParser(description="List tools of the Tusk Drift MCP server")
    parser.add_argument("--url", help="URL Streamable HTTP (например http://127.0.0.1:8000/mcp)")
    args = parser.parse_args(argv)

    if args.url:
        output = asyncio.run(list_tools_http(args.url))
    else:
        output = asyncio.run(list_tools_stdio())
    print(output)


if __name__ == "__main__":
    main()

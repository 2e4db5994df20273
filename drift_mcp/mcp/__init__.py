"""
MCP-слой проекта: сервер (stdio / Streamable HTTP), инструменты, реестр сессий.
"""
from drift_mcp.mcp.server import create_server, run_server

__all__ = ["create_server", "run_server"]

"""Tusk Drift MCP: span-записи Tusk Drift как инструменты MCP."""

__version__ = "0.1.0"

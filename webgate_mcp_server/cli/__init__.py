"""Command-line interface for Webgate MCP Server."""
from webgate_mcp_server.cli.main import main

__all__ = ["main"]

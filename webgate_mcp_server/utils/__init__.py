"""Utility functions for Webgate MCP Server."""
from webgate_mcp_server.utils.logging import configure_logging, console, get_logger, logger

__all__ = [
    "logger",
    "console",
    "configure_logging",
    "get_logger",
]

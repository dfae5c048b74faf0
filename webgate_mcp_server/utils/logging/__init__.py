"""Rich-based logging for Webgate MCP Server."""
from webgate_mcp_server.utils.logging.console import console
from webgate_mcp_server.utils.logging.logger import GatewayLogger, configure_logging, get_logger, logger

__all__ = ["console", "configure_logging", "GatewayLogger", "get_logger", "logger"]

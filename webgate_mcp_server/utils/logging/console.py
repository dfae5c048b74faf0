"""Shared Rich console for Webgate MCP Server output."""
from rich.console import Console
from rich.theme import Theme

# Create custom Rich theme
RICH_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "red",
    "critical": "red reverse",
    "debug": "dim",
    "success": "green",
    "domain": "blue",
    "tool": "magenta",
    "time": "bright_black",
})

# stdout carries the MCP stdio transport, so everything human-readable goes to stderr
console = Console(theme=RICH_THEME, highlight=True, stderr=True)

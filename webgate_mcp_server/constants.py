"""
Global constants and enumerations for the Webgate MCP Server.

This module defines system-wide constants, enumerations, and mappings used throughout
the Webgate MCP Server codebase. Centralizing these values ensures the tool layer, the
browser session store and the API client agree on names and defaults.

The module includes:

- ToolMode enum: Tool sets that can be enabled (base vs. pro)
- SearchEngine enum: Search engines reachable through the unblocker
- LogLevel enum: Standard logging levels
- INTERACTIVE_ROLES: Accessibility roles kept by the snapshot filter
- EMOJI_MAP: Emoji icons for enhanced logging

Example usage:
    ```python
    from webgate_mcp_server.constants import ToolMode, EMOJI_MAP

    if ToolMode.PRO in descriptor.modes:
        ...

    success_emoji = EMOJI_MAP["success"]  # ✅
    ```
"""
from enum import Enum
from typing import Dict, FrozenSet


class ToolMode(str, Enum):
    """Tool sets exposed by the server.

    BASE tools are always registered. PRO tools are registered only when the
    expanded tool set is enabled (``PRO_MODE=true``).
    """
    BASE = "base"
    PRO = "pro"


class SearchEngine(str, Enum):
    """Search engines that can be queried through the unblocker."""
    GOOGLE = "google"
    BING = "bing"
    YANDEX = "yandex"


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# Default zone names created on the unblocking service when missing
DEFAULT_UNLOCKER_ZONE = "mcp_unlocker"
DEFAULT_BROWSER_ZONE = "mcp_browser"

# Default API and remote browser endpoints
DEFAULT_API_BASE_URL = "https://api.brightdata.com"
DEFAULT_CDP_HOST = "brd.superproxy.io"
DEFAULT_CDP_PORT = 9222

# Dataset polling ceiling in seconds
DEFAULT_POLL_TIMEOUT = 600

# Statuses reported by the collection API while a snapshot is still being built
PENDING_SNAPSHOT_STATUSES: FrozenSet[str] = frozenset({"running", "building", "starting"})

# Accessibility roles the snapshot filter treats as actionable
INTERACTIVE_ROLES: FrozenSet[str] = frozenset({
    "button",
    "link",
    "textbox",
    "searchbox",
    "checkbox",
    "radio",
    "combobox",
    "listbox",
    "option",
    "menuitem",
    "menuitemcheckbox",
    "menuitemradio",
    "tab",
    "slider",
    "spinbutton",
    "switch",
    "treeitem",
})

# Emoji mapping by log type and action
EMOJI_MAP: Dict[str, str] = {
    "start": "🚀",
    "success": "✅",
    "error": "❌",
    "warning": "⚠️",
    "info": "ℹ️",
    "debug": "🔍",
    "critical": "🔥",

    # Component-specific emojis
    "server": "🖥️",
    "browser": "🌐",
    "connection": "🔌",
    "reconnect": "🔁",
    "request": "📤",
    "response": "📥",
    "processing": "⚙️",
    "config": "🔧",
    "time": "⏱️",
    "rate_limit": "🚦",
    "snapshot": "📸",
    "dataset": "📦",
    "tool": "🛠️",
    "test": "🧪",
}

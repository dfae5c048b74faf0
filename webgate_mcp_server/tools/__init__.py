"""MCP tools exposed by Webgate.

``TOOL_REGISTRY`` is the static list of every tool, each tagged with the modes
it belongs to. Base mode serves search, markdown scraping and usage stats; pro
mode (``PRO_MODE=true``) adds HTML scraping, batches, extraction, structured
dataset collection and the remote browser tools. Registration filters the
registry by mode, then by the ``tool_registration`` include and exclude lists,
and wraps each tool so every call goes through the dispatcher.
"""
from typing import Dict, Iterable, List, Optional, Tuple

from webgate_mcp_server.constants import ToolMode
from webgate_mcp_server.core.dispatcher import ToolDispatcher
from webgate_mcp_server.tools.base import BASE_AND_PRO, PRO_ONLY, ToolDescriptor, dispatched
from webgate_mcp_server.tools.browser import (
    scraping_browser_clear_requests,
    scraping_browser_click_ref,
    scraping_browser_get_html,
    scraping_browser_get_text,
    scraping_browser_go_back,
    scraping_browser_go_forward,
    scraping_browser_links,
    scraping_browser_navigate,
    scraping_browser_network_requests,
    scraping_browser_screenshot,
    scraping_browser_scroll,
    scraping_browser_scroll_to_ref,
    scraping_browser_sessions,
    scraping_browser_snapshot,
    scraping_browser_type_ref,
    scraping_browser_wait_for_ref,
)
from webgate_mcp_server.tools.datasets import DATASET_TOOLS, web_data_collect
from webgate_mcp_server.tools.scraping import (
    extract,
    scrape_as_html,
    scrape_as_markdown,
    scrape_batch,
    search_engine,
    search_engine_batch,
)
from webgate_mcp_server.tools.stats import session_stats
from webgate_mcp_server.utils import get_logger

logger = get_logger("webgate_mcp_server.tools")

BASE_TOOL_FUNCTIONS = [
    search_engine,
    scrape_as_markdown,
    session_stats,
]

PRO_TOOL_FUNCTIONS = [
    scrape_as_html,
    search_engine_batch,
    scrape_batch,
    extract,
    web_data_collect,
    *DATASET_TOOLS,
    scraping_browser_navigate,
    scraping_browser_go_back,
    scraping_browser_go_forward,
    scraping_browser_snapshot,
    scraping_browser_click_ref,
    scraping_browser_type_ref,
    scraping_browser_wait_for_ref,
    scraping_browser_scroll,
    scraping_browser_scroll_to_ref,
    scraping_browser_screenshot,
    scraping_browser_get_text,
    scraping_browser_get_html,
    scraping_browser_links,
    scraping_browser_network_requests,
    scraping_browser_clear_requests,
    scraping_browser_sessions,
]

TOOL_REGISTRY: Tuple[ToolDescriptor, ...] = tuple(
    [ToolDescriptor(name=fn.__name__, fn=fn, modes=BASE_AND_PRO) for fn in BASE_TOOL_FUNCTIONS]
    + [ToolDescriptor(name=fn.__name__, fn=fn, modes=PRO_ONLY) for fn in PRO_TOOL_FUNCTIONS]
)


def select_tools(
    mode: ToolMode,
    included_tools: Optional[Iterable[str]] = None,
    excluded_tools: Optional[Iterable[str]] = None,
    registry: Iterable[ToolDescriptor] = TOOL_REGISTRY,
) -> List[ToolDescriptor]:
    """Descriptors active for ``mode`` after include/exclude filtering, in registry order."""
    included = set(included_tools or [])
    excluded = set(excluded_tools or [])
    selected = []
    for descriptor in registry:
        if mode not in descriptor.modes:
            continue
        if included and descriptor.name not in included:
            logger.debug(f"Skipping tool {descriptor.name} (not in included_tools)")
            continue
        if descriptor.name in excluded:
            logger.debug(f"Skipping tool {descriptor.name} (in excluded_tools)")
            continue
        selected.append(descriptor)
    return selected


def register_tools(
    mcp_server,
    dispatcher: ToolDispatcher,
    mode: ToolMode,
    included_tools: Optional[Iterable[str]] = None,
    excluded_tools: Optional[Iterable[str]] = None,
) -> Dict[str, str]:
    """Register the tools active for ``mode`` with a FastMCP server.

    Returns:
        Mapping of registered tool name to its one-line summary
    """
    registered: Dict[str, str] = {}
    for descriptor in select_tools(mode, included_tools, excluded_tools):
        mcp_server.tool(name=descriptor.name, description=descriptor.description)(dispatched(descriptor, dispatcher))
        registered[descriptor.name] = descriptor.summary
        logger.debug(f"Registered tool: {descriptor.name}", emoji_key="tool")
    logger.info(f"Registered {len(registered)} tools ({mode.value} mode)", emoji_key="tool")
    return registered


__all__ = [
    "TOOL_REGISTRY",
    "ToolDescriptor",
    "register_tools",
    "select_tools",
]

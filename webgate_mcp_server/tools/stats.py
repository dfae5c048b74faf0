"""Usage statistics tool."""
from typing import Any, Dict

from webgate_mcp_server.core.dispatcher import ToolContext
from webgate_mcp_server.tools.base import require_gateway


async def session_stats(recent: int = 10, ctx: ToolContext = None) -> Dict[str, Any]:
    """Report tool usage for this server session.

    Args:
        recent: Number of most recent invocations to include. Defaults to 10.

    Returns:
        Per-tool call counts and timings, outcome totals, the rate limit state
        and the most recent invocations.
    """
    dispatcher = require_gateway().dispatcher
    stats = dispatcher.get_stats()
    stats["recent_invocations"] = [record.to_dict() for record in dispatcher.recent_invocations(max(recent, 0))]
    return stats

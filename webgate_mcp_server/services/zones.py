"""Startup bootstrap of the zones the server depends on."""
from typing import List

from webgate_mcp_server.exceptions import ToolError
from webgate_mcp_server.utils import get_logger

logger = get_logger("webgate_mcp_server.services.zones")

UNLOCKER_ZONE_TYPE = "unblocker"
BROWSER_ZONE_TYPE = "browser_api"


async def ensure_required_zones(api_client, unlocker_zone: str, browser_zone: str, include_browser: bool) -> List[str]:
    """Create the configured zones that do not exist yet.

    Failures are logged and swallowed so a restricted account still serves the
    tools that work without zone management.

    Returns:
        Names of the zones that were created
    """
    required = {unlocker_zone: UNLOCKER_ZONE_TYPE}
    if include_browser:
        required[browser_zone] = BROWSER_ZONE_TYPE

    try:
        existing = {zone.get("name") for zone in await api_client.active_zones()}
    except ToolError as e:
        logger.warning(f"Could not list active zones, skipping zone bootstrap: {e}", emoji_key="config")
        return []

    created = []
    for name, zone_type in required.items():
        if name in existing:
            logger.debug(f"Zone '{name}' already exists", emoji_key="config")
            continue
        try:
            await api_client.create_zone(name, zone_type)
            created.append(name)
        except ToolError as e:
            logger.warning(f"Could not create zone '{name}': {e}", emoji_key="config")
    return created

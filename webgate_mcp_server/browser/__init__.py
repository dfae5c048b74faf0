"""Remote browser sessions and accessibility snapshots."""
from webgate_mcp_server.browser.connection import (
    BrowserConnection,
    BrowserConnector,
    PlaywrightConnector,
    StaticEndpointResolver,
    TransportError,
    ZoneEndpointResolver,
)
from webgate_mcp_server.browser.session_store import (
    ConnectionState,
    NetworkEntry,
    NetworkLog,
    Session,
    SessionStore,
    normalize_domain,
)
from webgate_mcp_server.browser.snapshot import (
    AccessibilityNode,
    FilteredElement,
    FilterOptions,
    Snapshot,
    SnapshotFilter,
    parse_cdp_ax_tree,
)

__all__ = [
    "AccessibilityNode",
    "BrowserConnection",
    "BrowserConnector",
    "ConnectionState",
    "FilteredElement",
    "FilterOptions",
    "NetworkEntry",
    "NetworkLog",
    "PlaywrightConnector",
    "Session",
    "SessionStore",
    "Snapshot",
    "SnapshotFilter",
    "StaticEndpointResolver",
    "TransportError",
    "ZoneEndpointResolver",
    "normalize_domain",
    "parse_cdp_ax_tree",
]

"""Clients for the external unblocking and collection service."""
from webgate_mcp_server.services.api_client import ApiClient, search_url
from webgate_mcp_server.services.zones import ensure_required_zones

__all__ = ["ApiClient", "ensure_required_zones", "search_url"]

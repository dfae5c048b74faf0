"""Core functionality for Webgate MCP Server."""
# The running Gateway is published here by the server lifespan so tools can
# reach the session store, API client and dispatcher.
_gateway_instance = None


def get_gateway():
    """Return the running Gateway instance, or None outside of a running server."""
    return _gateway_instance

"""Main server implementation for Webgate MCP Server."""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

import webgate_mcp_server.core
from webgate_mcp_server import __version__
from webgate_mcp_server.browser.connection import (
    BrowserConnector,
    PlaywrightConnector,
    StaticEndpointResolver,
    ZoneEndpointResolver,
)
from webgate_mcp_server.browser.session_store import SessionStore
from webgate_mcp_server.browser.snapshot import FilterOptions, SnapshotFilter
from webgate_mcp_server.config import GatewayConfig, get_config
from webgate_mcp_server.constants import ToolMode
from webgate_mcp_server.core.dispatcher import ToolDispatcher
from webgate_mcp_server.core.rate_limit import RateGate
from webgate_mcp_server.services.api_client import ApiClient
from webgate_mcp_server.services.zones import ensure_required_zones
from webgate_mcp_server.tools import register_tools
from webgate_mcp_server.utils import get_logger

SERVER_INSTRUCTIONS = """
Webgate gives you access to the public web through an unblocking service.

- Use `search_engine` to find pages and `scrape_as_markdown` to read them; both
  bypass bot detection and CAPTCHAs.
- `web_data_*` tools return structured records for supported sites and are
  usually faster and more reliable than scraping those sites.
- Browser tools (`scraping_browser_*`) drive a real remote browser. Call
  `scraping_browser_navigate` first, then `scraping_browser_snapshot` to get
  element refs, then act on elements by ref. Refs are only valid for the latest
  snapshot of the page.
- Every host gets its own isolated browser session.
- Calls may be rate limited; when that happens, wait for the indicated time.
""".strip()


class Gateway:
    """
    Webgate MCP server: owns the FastMCP instance and the runtime services.

    The dispatcher exists from construction so tools can be registered up
    front. The API client, the browser session store and the idle-session
    sweeper are created by the FastMCP lifespan and torn down with it. While
    the server runs, the instance is published as
    ``webgate_mcp_server.core._gateway_instance`` for the tool bodies.

    Args:
        config: Loaded configuration; the global configuration when omitted
        register_tools: Whether to register the tools for the configured mode
        connector: Browser connector override (Playwright over CDP by default)
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        register_tools: bool = True,
        connector: Optional[BrowserConnector] = None,
    ):
        self.config = config or get_config()
        self.name = self.config.server.name
        self.logger = get_logger("webgate_mcp_server.server")
        self.mode = ToolMode.PRO if self.config.pro_mode else ToolMode.BASE

        self.dispatcher = ToolDispatcher(RateGate(self.config.rate_limit_spec))
        self.connector: BrowserConnector = connector or PlaywrightConnector(
            connect_timeout=self.config.browser.navigation_timeout
        )
        self.api_client: Optional[ApiClient] = None
        self.session_store: Optional[SessionStore] = None
        self.registered_tools: Dict[str, str] = {}
        self._sweeper: Optional[asyncio.Task] = None

        self.mcp = FastMCP(
            self.name,
            lifespan=self._server_lifespan,
            host=self.config.server.host,
            port=self.config.server.port,
            instructions=SERVER_INSTRUCTIONS,
        )

        if register_tools:
            self._register_tools()
            self._register_resources()

        self.logger.info(
            f"Webgate MCP Server '{self.name}' initialized",
            emoji_key="server",
            mode=self.mode.value,
            rate_limit=self.config.rate_limit or "unlimited",
        )

    def _register_tools(self) -> None:
        registration = self.config.tool_registration
        self.registered_tools = register_tools(
            self.mcp,
            self.dispatcher,
            self.mode,
            included_tools=registration.included_tools,
            excluded_tools=registration.excluded_tools,
        )

    def _register_resources(self) -> None:
        @self.mcp.resource("info://server")
        def get_server_info() -> Dict[str, Any]:
            """Server name, version, mode, tools and rate limit."""
            return {
                "name": self.name,
                "version": __version__,
                "mode": self.mode.value,
                "tools": sorted(self.registered_tools),
                "rate_limit": self.dispatcher.rate_gate.describe(),
            }

    @asynccontextmanager
    async def _server_lifespan(self, server: FastMCP):
        """Start the runtime services, publish the gateway and tear everything down on exit."""
        self.logger.info(f"Starting Webgate MCP Server '{self.name}'", emoji_key="start")
        await self.start()
        webgate_mcp_server.core._gateway_instance = self
        try:
            yield {"gateway": self}
        finally:
            webgate_mcp_server.core._gateway_instance = None
            await self.shutdown()

    async def start(self) -> None:
        config = self.config
        self.api_client = ApiClient(
            api_token=config.api_token,
            unlocker_zone=config.web_unlocker_zone,
            base_url=config.api.base_url,
            request_timeout=config.api.request_timeout,
            poll_timeout=config.api.poll_timeout,
            poll_interval=config.api.poll_interval,
        )

        browser = config.browser
        if browser.cdp_endpoint:
            endpoint_resolver = StaticEndpointResolver(browser.cdp_endpoint)
        else:
            endpoint_resolver = ZoneEndpointResolver(
                self.api_client, config.browser_zone, browser.cdp_host, browser.cdp_port, browser.country
            )
        self.session_store = SessionStore(
            connector=self.connector,
            endpoint_resolver=endpoint_resolver,
            snapshot_filter=SnapshotFilter(FilterOptions(max_name_length=browser.max_name_length)),
            max_attempts=browser.max_connect_attempts,
            backoff=browser.reconnect_backoff,
            navigation_timeout=browser.navigation_timeout,
        )

        await ensure_required_zones(
            self.api_client,
            config.web_unlocker_zone,
            config.browser_zone,
            include_browser=self.mode == ToolMode.PRO and not browser.cdp_endpoint,
        )

        if browser.idle_timeout > 0:
            self._sweeper = asyncio.create_task(self._sweep_idle_sessions(browser.idle_timeout))

    async def _sweep_idle_sessions(self, idle_timeout: float) -> None:
        interval = max(idle_timeout / 2, 1.0)
        while True:
            await asyncio.sleep(interval)
            try:
                closed = await self.session_store.close_idle_sessions(idle_timeout)
            except Exception as e:
                self.logger.error(f"Idle session sweep failed: {e}", exc_info=True)
                continue
            if closed:
                self.logger.info(f"Closed idle browser sessions: {', '.join(closed)}", emoji_key="browser")

    async def shutdown(self) -> None:
        self.logger.info("Shutting down Webgate MCP Server", emoji_key="server")
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        if self.session_store is not None:
            await self.session_store.close_all()
        stop = getattr(self.connector, "stop", None)
        if stop is not None:
            await stop()
        if self.api_client is not None:
            await self.api_client.aclose()
            self.api_client = None
        self.logger.success("Shutdown complete", emoji_key="server")

    def run(self, transport: Optional[str] = None) -> None:
        """Serve over ``transport`` (the configured one by default); blocks until exit."""
        transport = transport or self.config.server.transport
        self.logger.info(f"Serving over {transport}", emoji_key="server")
        self.mcp.run(transport=transport)

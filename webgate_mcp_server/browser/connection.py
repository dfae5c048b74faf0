"""Remote browser collaborator: CDP endpoint resolution and the Playwright adapter.

The session store only depends on the small ``BrowserConnector`` /
``BrowserConnection`` interfaces defined here. ``PlaywrightConnector`` is the
production implementation: it attaches to a remote Chromium over the Chrome
DevTools Protocol with ``connect_over_cdp`` and reads accessibility trees
through a CDP session.
"""
import asyncio
import hashlib
from typing import Any, Callable, List, Optional, Protocol, Tuple
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from playwright.async_api import Browser, BrowserContext, Locator, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from webgate_mcp_server.browser.snapshot import AccessibilityNode, FilteredElement, parse_cdp_ax_tree
from webgate_mcp_server.exceptions import BrowserConnectionError, ElementNotFoundError
from webgate_mcp_server.utils import get_logger

logger = get_logger("webgate_mcp_server.browser.connection")

# Attribute used to hand an element found through CDP over to a Playwright locator
REF_ATTRIBUTE = "data-webgate-ref"

_MARK_ELEMENT_JS = """
function(ref) {
    const el = this.nodeType === 1 ? this : this.parentElement;
    if (!el) { return false; }
    document.querySelectorAll('[%(attr)s="' + ref + '"]').forEach(e => e.removeAttribute('%(attr)s'));
    el.setAttribute('%(attr)s', ref);
    return true;
}
""" % {"attr": REF_ATTRIBUTE}


class TransportError(Exception):
    """Raised by a connection when the underlying transport is gone."""


class BrowserConnection(Protocol):
    """A live connection to one remote browser session."""

    def is_connected(self) -> bool: ...

    def on_disconnected(self, callback: Callable[[], None]) -> None: ...

    async def acquire_page(self) -> Tuple[Any, bool]:
        """Return ``(page, reused)``: an existing page when the browser has one, else a new page."""
        ...

    async def accessibility_tree(self, page: Any) -> AccessibilityNode: ...

    async def locate(self, page: Any, element: FilteredElement) -> Any: ...

    async def close(self) -> None: ...


class BrowserConnector(Protocol):
    """Factory for browser connections."""

    async def connect(self, endpoint: str, session_token: str) -> BrowserConnection: ...


def session_token_for(domain: str) -> str:
    """Stable, credential-safe session token derived from a domain."""
    return hashlib.sha1(domain.encode("utf-8")).hexdigest()[:16]


def is_session_scoped(endpoint: str) -> bool:
    """Whether the endpoint's credentials can select a per-session remote browser."""
    username = urlsplit(endpoint).username
    return bool(username) and username.startswith("brd-customer-")


def build_cdp_url(endpoint: str, session_token: str) -> str:
    """Scope a zone endpoint to one browser session.

    Zone endpoints carry ``brd-customer-<id>-zone-<zone>`` credentials; the
    session token is appended to the username so every domain gets its own
    remote browser session. Any other endpoint (a local Chrome, say) is
    returned unchanged.
    """
    if not is_session_scoped(endpoint):
        return endpoint
    parts = urlsplit(endpoint)
    netloc = f"{parts.username}-session-{session_token}"
    if parts.password:
        netloc += f":{quote(unquote(parts.password), safe='')}"
    netloc += f"@{parts.hostname}"
    if parts.port:
        netloc += f":{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class ZoneEndpointResolver:
    """Resolves the CDP endpoint of the configured browser zone.

    Credentials are fetched once from the API (customer id and zone password)
    and cached for the life of the process.
    """

    def __init__(self, api_client, zone: str, host: str, port: int, country: Optional[str] = None):
        self.api_client = api_client
        self.zone = zone
        self.host = host
        self.port = port
        self.country = country
        self._endpoint: Optional[str] = None
        self._lock = asyncio.Lock()

    async def __call__(self) -> str:
        async with self._lock:
            if self._endpoint is None:
                customer = await self.api_client.customer_id()
                password = await self.api_client.zone_password(self.zone)
                username = f"brd-customer-{customer}-zone-{self.zone}"
                if self.country:
                    username += f"-country-{self.country.lower()}"
                self._endpoint = f"wss://{username}:{quote(password, safe='')}@{self.host}:{self.port}"
                logger.info("Resolved remote browser endpoint", emoji_key="config", zone=self.zone)
            return self._endpoint


class StaticEndpointResolver:
    """Returns a fixed endpoint (``browser.cdp_endpoint`` override)."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint

    async def __call__(self) -> str:
        return self.endpoint


class PlaywrightConnection:
    """BrowserConnection backed by a Playwright ``Browser`` attached over CDP.

    A session-scoped endpoint hands every connection its own remote browser,
    so the first tab of the default context belongs to this session and is
    picked up again on reconnect. Any other endpoint may be shared by several
    sessions; the connection then works in a browser context it creates and
    closes itself.
    """

    def __init__(self, browser: Browser, session_scoped: bool = True):
        self.browser = browser
        self.session_scoped = session_scoped
        self._context: Optional[BrowserContext] = None
        self._disconnect_callbacks: List[Callable[[], None]] = []
        browser.on("disconnected", self._handle_disconnected)

    def _handle_disconnected(self, *_args) -> None:
        for callback in list(self._disconnect_callbacks):
            callback()

    def is_connected(self) -> bool:
        return self.browser.is_connected()

    def on_disconnected(self, callback: Callable[[], None]) -> None:
        self._disconnect_callbacks.append(callback)

    async def _page_context(self) -> BrowserContext:
        if self.session_scoped:
            return self.browser.contexts[0] if self.browser.contexts else await self.browser.new_context()
        if self._context is None:
            self._context = await self.browser.new_context()
        return self._context

    async def acquire_page(self) -> Tuple[Page, bool]:
        try:
            context = await self._page_context()
            open_pages = [page for page in context.pages if not page.is_closed()]
            if open_pages:
                return open_pages[0], True
            return await context.new_page(), False
        except PlaywrightError as e:
            raise TransportError(str(e)) from e

    async def accessibility_tree(self, page: Page) -> AccessibilityNode:
        cdp = await page.context.new_cdp_session(page)
        try:
            result = await cdp.send("Accessibility.getFullAXTree")
        finally:
            await cdp.detach()
        return parse_cdp_ax_tree(result.get("nodes") or [])

    async def locate(self, page: Page, element: FilteredElement) -> Locator:
        """Resolve a snapshot element to a Playwright locator."""
        if element.locator is None:
            raise ElementNotFoundError(
                f"Element ref {element.ref} cannot be targeted. Capture a new snapshot.",
                param_name="ref",
                provided_value=element.ref,
            )
        cdp = await page.context.new_cdp_session(page)
        try:
            resolved = await cdp.send("DOM.resolveNode", {"backendNodeId": element.locator})
            marked = await cdp.send("Runtime.callFunctionOn", {
                "objectId": resolved["object"]["objectId"],
                "functionDeclaration": _MARK_ELEMENT_JS,
                "arguments": [{"value": str(element.ref)}],
                "returnByValue": True,
            })
        except PlaywrightError as e:
            if not self.is_connected() or page.is_closed():
                raise
            raise ElementNotFoundError(
                f"Element ref {element.ref} is no longer on the page. Capture a new snapshot.",
                param_name="ref",
                provided_value=element.ref,
            ) from e
        finally:
            try:
                await cdp.detach()
            except PlaywrightError:
                logger.debug("CDP session already detached")
        if not (marked.get("result") or {}).get("value"):
            raise ElementNotFoundError(
                f"Element ref {element.ref} is not attached to an element. Capture a new snapshot.",
                param_name="ref",
                provided_value=element.ref,
            )
        return page.locator(f'[{REF_ATTRIBUTE}="{element.ref}"]').first

    async def close(self) -> None:
        if self._context is not None:
            context, self._context = self._context, None
            try:
                await context.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser context: {e}")
        try:
            await self.browser.close()
        except PlaywrightError as e:
            logger.warning(f"Error closing browser connection: {e}")


class PlaywrightConnector:
    """BrowserConnector that attaches to remote browsers with ``connect_over_cdp``."""

    def __init__(self, connect_timeout: float = 60.0):
        self.connect_timeout = connect_timeout
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()

    async def _ensure_playwright(self) -> Playwright:
        async with self._lock:
            if self._playwright is None:
                try:
                    self._playwright = await async_playwright().start()
                    logger.info("Playwright started.", emoji_key="browser")
                except Exception as e:
                    raise BrowserConnectionError(f"Failed to start Playwright: {e}") from e
            return self._playwright

    async def connect(self, endpoint: str, session_token: str) -> PlaywrightConnection:
        playwright = await self._ensure_playwright()
        try:
            browser = await playwright.chromium.connect_over_cdp(
                build_cdp_url(endpoint, session_token),
                timeout=self.connect_timeout * 1000,
            )
        except PlaywrightError as e:
            raise TransportError(f"Could not connect to the remote browser: {e}") from e
        return PlaywrightConnection(browser, session_scoped=is_session_scoped(endpoint))

    async def stop(self) -> None:
        async with self._lock:
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.warning(f"Error stopping Playwright: {e}")
                finally:
                    self._playwright = None

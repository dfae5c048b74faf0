"""Remote browser tools.

Every tool acts on a session from the Session Store: ``navigate`` picks (or
opens) the session for the URL's host and makes it the active one; the other
tools act on the active session. Elements are targeted by the refs of the
latest snapshot, so agents call ``scraping_browser_snapshot`` before
interacting with a page.
"""
import json
from typing import Any, Dict, List, Tuple

from mcp.server.fastmcp import Image
from playwright.async_api import Error as PlaywrightError

from webgate_mcp_server.browser.session_store import Session, SessionStore
from webgate_mcp_server.browser.snapshot import FilteredElement
from webgate_mcp_server.core.dispatcher import ToolContext
from webgate_mcp_server.exceptions import ToolError, ToolInputError
from webgate_mcp_server.tools.base import require_gateway
from webgate_mcp_server.utils import get_logger

logger = get_logger("webgate_mcp_server.tools.browser")

ACTION_TIMEOUT_MS = 30_000

_LINKS_JS = """
els => els.map(e => ({text: (e.innerText || e.getAttribute('aria-label') || '').trim(), href: e.href}))
"""


def _store() -> SessionStore:
    return require_gateway().session_store


def _raise_action_error(session: Session, message: str, error: Exception):
    """Re-raise transport failures for the store to handle; report the rest to the agent."""
    if not session.transport_alive:
        raise error
    raise ToolError(f"{message}: {error}") from error


async def _locate(session: Session, ref: int) -> Tuple[FilteredElement, Any]:
    element = _store().resolve_ref(session, ref)
    return element, await session.connection.locate(session.page, element)


def _describe(element: FilteredElement) -> str:
    return f'[ref={element.ref}] {element.role} "{element.name}"'


async def _page_summary(session: Session) -> str:
    title = await session.page.title()
    return f"URL: {session.page.url}\nTitle: {title}"


async def scraping_browser_navigate(url: str, clear_requests: bool = True, ctx: ToolContext = None) -> str:
    """Open a URL in the remote browser.

    Each host gets its own isolated browser session; navigating to another
    host switches to (or opens) that host's session.

    Args:
        url: Page URL (http or https).
        clear_requests: Start the network request log afresh. Defaults to true.
    """
    store = _store()
    session = await store.get_or_create_session(url)
    session = await store.navigate(session, url, clear_requests=clear_requests)
    return f"Successfully navigated to {url}\n{await store.execute(session, _page_summary)}"


async def _history(direction: str) -> str:
    store = _store()
    session = await store.active_session()

    async def move(current: Session):
        go = current.page.go_back if direction == "back" else current.page.go_forward
        try:
            response = await go(timeout=store.navigation_timeout * 1000, wait_until="domcontentloaded")
        except PlaywrightError as e:
            _raise_action_error(current, f"Could not go {direction}", e)
        if response is None and direction == "back":
            raise ToolError("There is no previous page in this session's history.")
        if response is None:
            raise ToolError("There is no next page in this session's history.")
        current.snapshot = None
        return await _page_summary(current)

    return f"Went {direction}\n{await store.execute(session, move)}"


async def scraping_browser_go_back(ctx: ToolContext = None) -> str:
    """Go back to the previous page of the active session."""
    return await _history("back")


async def scraping_browser_go_forward(ctx: ToolContext = None) -> str:
    """Go forward to the next page of the active session."""
    return await _history("forward")


async def scraping_browser_snapshot(full: bool = False, ctx: ToolContext = None) -> str:
    """Capture an accessibility snapshot of the current page.

    Lists interactive elements (links, buttons, inputs...) with refs to use in
    click, type, wait and scroll tools. Refs are valid until the next snapshot.

    Args:
        full: List every accessibility node instead of interactive ones only.
    """
    store = _store()
    session = await store.active_session()
    if full:
        snapshot = await store.capture_full_snapshot(session)
    else:
        snapshot = await store.capture_snapshot(session)
    body = snapshot.format() or "(no interactive elements found)"
    return f"Page: {snapshot.url}\nTitle: {snapshot.title}\n\nElements:\n{body}"


async def scraping_browser_click_ref(ref: int, ctx: ToolContext = None) -> str:
    """Click an element by its ref from the latest snapshot.

    Args:
        ref: Element ref, as shown by scraping_browser_snapshot.
    """
    store = _store()
    session = await store.active_session()

    async def click(current: Session):
        element, locator = await _locate(current, ref)
        try:
            await locator.click(timeout=ACTION_TIMEOUT_MS)
        except PlaywrightError as e:
            _raise_action_error(current, f"Could not click {_describe(element)}", e)
        return element

    element = await store.execute(session, click)
    return f"Clicked {_describe(element)}"


async def scraping_browser_type_ref(ref: int, text: str, submit: bool = False, ctx: ToolContext = None) -> str:
    """Type text into an input element by its ref from the latest snapshot.

    Args:
        ref: Element ref, as shown by scraping_browser_snapshot.
        text: Text to enter; replaces the current value.
        submit: Press Enter after typing.
    """
    store = _store()
    session = await store.active_session()

    async def type_text(current: Session):
        element, locator = await _locate(current, ref)
        try:
            await locator.fill(text, timeout=ACTION_TIMEOUT_MS)
            if submit:
                await locator.press("Enter", timeout=ACTION_TIMEOUT_MS)
        except PlaywrightError as e:
            _raise_action_error(current, f"Could not type into {_describe(element)}", e)
        return element

    element = await store.execute(session, type_text)
    suffix = " and submitted" if submit else ""
    return f'Typed "{text}" into {_describe(element)}{suffix}'


async def scraping_browser_wait_for_ref(ref: int, timeout: float = 30.0, ctx: ToolContext = None) -> str:
    """Wait until an element from the latest snapshot is visible.

    Args:
        ref: Element ref, as shown by scraping_browser_snapshot.
        timeout: Seconds to wait. Defaults to 30.
    """
    if timeout <= 0:
        raise ToolInputError("Timeout must be positive", param_name="timeout", provided_value=timeout)
    store = _store()
    session = await store.active_session()

    async def wait(current: Session):
        element, locator = await _locate(current, ref)
        try:
            await locator.wait_for(state="visible", timeout=timeout * 1000)
        except PlaywrightError as e:
            _raise_action_error(current, f"{_describe(element)} did not become visible within {timeout:g}s", e)
        return element

    element = await store.execute(session, wait)
    return f"{_describe(element)} is visible"


async def scraping_browser_scroll(ctx: ToolContext = None) -> str:
    """Scroll to the bottom of the current page."""
    store = _store()
    session = await store.active_session()

    async def scroll(current: Session):
        await current.page.evaluate("window.scrollTo(0, document.body.scrollHeight)")

    await store.execute(session, scroll)
    return "Scrolled to the bottom of the page"


async def scraping_browser_scroll_to_ref(ref: int, ctx: ToolContext = None) -> str:
    """Scroll an element from the latest snapshot into view.

    Args:
        ref: Element ref, as shown by scraping_browser_snapshot.
    """
    store = _store()
    session = await store.active_session()

    async def scroll(current: Session):
        element, locator = await _locate(current, ref)
        try:
            await locator.scroll_into_view_if_needed(timeout=ACTION_TIMEOUT_MS)
        except PlaywrightError as e:
            _raise_action_error(current, f"Could not scroll to {_describe(element)}", e)
        return element

    element = await store.execute(session, scroll)
    return f"Scrolled to {_describe(element)}"


async def scraping_browser_screenshot(full_page: bool = False, ctx: ToolContext = None) -> Image:
    """Take a PNG screenshot of the current page.

    Args:
        full_page: Capture the whole scrollable page instead of the viewport.
    """
    store = _store()
    session = await store.active_session()
    data = await store.execute(session, lambda current: current.page.screenshot(full_page=full_page, type="png"))
    return Image(data=data, format="png")


async def scraping_browser_get_text(ctx: ToolContext = None) -> str:
    """Get the visible text content of the current page."""
    store = _store()
    session = await store.active_session()
    return await store.execute(session, lambda current: current.page.inner_text("body"))


async def scraping_browser_get_html(full_page: bool = False, ctx: ToolContext = None) -> str:
    """Get the HTML of the current page.

    Args:
        full_page: Return the whole document including <head>. By default only
            the <body> markup is returned.
    """
    store = _store()
    session = await store.active_session()
    if full_page:
        return await store.execute(session, lambda current: current.page.content())
    return await store.execute(session, lambda current: current.page.inner_html("body"))


async def scraping_browser_links(ctx: ToolContext = None) -> str:
    """List the links of the current page as JSON objects with ``text`` and ``href``."""
    store = _store()
    session = await store.active_session()
    links: List[Dict[str, str]] = await store.execute(
        session, lambda current: current.page.eval_on_selector_all("a[href]", _LINKS_JS)
    )
    return json.dumps(links, indent=2, ensure_ascii=False)


async def scraping_browser_network_requests(ctx: ToolContext = None) -> str:
    """List the network requests made by the current page since the last navigation or clear."""
    session = await _store().active_session()
    entries = session.network_log.entries()
    if not entries:
        return "No network requests recorded"
    return f"Network requests ({len(entries)}):\n" + "\n".join(entry.format() for entry in entries)


async def scraping_browser_clear_requests(ctx: ToolContext = None) -> str:
    """Clear the network request log of the active session."""
    store = _store()
    store.clear_requests(await store.active_session())
    return "Network request log cleared"


async def scraping_browser_sessions(ctx: ToolContext = None) -> Dict[str, Any]:
    """Describe the open browser sessions, one per host."""
    store = _store()
    return {
        "active_domain": store.active_domain,
        "sessions": [session.describe() for session in store.sessions()],
    }

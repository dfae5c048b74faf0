"""Tests for the scraping_browser_* tools, driven against the in-memory browser."""
import pytest

from webgate_mcp_server.exceptions import ElementNotFoundError, ToolInputError
from webgate_mcp_server.tools.browser import (
    scraping_browser_clear_requests,
    scraping_browser_click_ref,
    scraping_browser_get_text,
    scraping_browser_navigate,
    scraping_browser_network_requests,
    scraping_browser_scroll,
    scraping_browser_sessions,
    scraping_browser_snapshot,
    scraping_browser_type_ref,
    scraping_browser_wait_for_ref,
)
from webgate_mcp_server.utils import get_logger

logger = get_logger("test.browser_tools")


class TestBrowserTools:
    """Tests for the scraping_browser_* tools."""

    @pytest.mark.asyncio
    async def test_navigate_then_snapshot(self, gateway):
        result = await scraping_browser_navigate("https://shop.test/")
        assert result == "Successfully navigated to https://shop.test/\nURL: https://shop.test/\nTitle: Fake Page"

        snapshot = await scraping_browser_snapshot()
        assert snapshot == (
            "Page: https://shop.test/\nTitle: Fake Page\n\nElements:\n"
            '- [ref=1] link "Home"\n'
            '- [ref=2] button "Search"'
        )

    @pytest.mark.asyncio
    async def test_full_snapshot(self, gateway):
        await scraping_browser_navigate("https://shop.test/")
        snapshot = await scraping_browser_snapshot(full=True)
        assert '- [ref=1] RootWebArea "Fake"' in snapshot
        assert '  - [ref=3] button "Search"' in snapshot

    @pytest.mark.asyncio
    async def test_tools_require_navigation(self, gateway):
        with pytest.raises(ToolInputError, match="scraping_browser_navigate"):
            await scraping_browser_snapshot()

    @pytest.mark.asyncio
    async def test_click_and_type_by_ref(self, gateway):
        await scraping_browser_navigate("https://shop.test/")
        await scraping_browser_snapshot()

        assert await scraping_browser_click_ref(2) == 'Clicked [ref=2] button "Search"'
        typed = await scraping_browser_type_ref(1, "lamps", submit=True)
        assert typed == 'Typed "lamps" into [ref=1] link "Home" and submitted'
        assert await scraping_browser_wait_for_ref(2) == '[ref=2] button "Search" is visible'

        locators = gateway.session_store.get("shop.test").connection.locators
        assert locators[2].actions == [("click", None), ("wait_for", "visible")]
        assert locators[1].actions == [("fill", "lamps"), ("press", "Enter")]

    @pytest.mark.asyncio
    async def test_unknown_ref(self, gateway):
        await scraping_browser_navigate("https://shop.test/")
        with pytest.raises(ElementNotFoundError):
            await scraping_browser_click_ref(1)

        await scraping_browser_snapshot()
        with pytest.raises(ElementNotFoundError, match="Ref 9"):
            await scraping_browser_click_ref(9)

    @pytest.mark.asyncio
    async def test_wait_rejects_non_positive_timeout(self, gateway):
        with pytest.raises(ToolInputError):
            await scraping_browser_wait_for_ref(1, timeout=0)

    @pytest.mark.asyncio
    async def test_network_requests(self, gateway):
        await scraping_browser_navigate("https://shop.test/")
        session = gateway.session_store.get("shop.test")
        logger.info("Recording a failed API call", emoji_key="test")
        session.page.request("https://shop.test/api/cart", status=404)

        listing = await scraping_browser_network_requests()
        assert listing.splitlines() == [
            "Network requests (2):",
            "[GET] https://shop.test/ => [200] OK",
            "[GET] https://shop.test/api/cart => [404] OK",
        ]

        assert await scraping_browser_clear_requests() == "Network request log cleared"
        assert await scraping_browser_network_requests() == "No network requests recorded"

    @pytest.mark.asyncio
    async def test_page_content_tools(self, gateway):
        await scraping_browser_navigate("https://shop.test/item")
        assert await scraping_browser_get_text() == "text of https://shop.test/item"
        assert await scraping_browser_scroll() == "Scrolled to the bottom of the page"

    @pytest.mark.asyncio
    async def test_sessions_listing(self, gateway):
        await scraping_browser_navigate("https://one.test/")
        await scraping_browser_navigate("https://two.test/")

        listing = await scraping_browser_sessions()
        assert listing["active_domain"] == "two.test"
        assert sorted(s["domain"] for s in listing["sessions"]) == ["one.test", "two.test"]
        assert all(s["state"] == "connected" for s in listing["sessions"])

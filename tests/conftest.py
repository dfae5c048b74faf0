"""Shared fixtures: an in-memory remote browser and a stub gateway."""
import asyncio
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

import webgate_mcp_server.core
from webgate_mcp_server import config as config_module
from webgate_mcp_server.browser.connection import StaticEndpointResolver, TransportError
from webgate_mcp_server.browser.session_store import SessionStore
from webgate_mcp_server.browser.snapshot import AccessibilityNode, FilteredElement
from webgate_mcp_server.core.dispatcher import ToolDispatcher


class FakeRequest:
    def __init__(self, url: str, method: str = "GET", resource_type: str = "document"):
        self.url = url
        self.method = method
        self.resource_type = resource_type
        self.failure: Optional[str] = None


class FakeResponse:
    def __init__(self, request: FakeRequest, status: int = 200, status_text: str = "OK"):
        self.request = request
        self.status = status
        self.status_text = status_text


class FakeLocator:
    def __init__(self, element: FilteredElement):
        self.element = element
        self.actions: List[Tuple[str, Any]] = []

    async def click(self, timeout=None):
        self.actions.append(("click", None))

    async def fill(self, text, timeout=None):
        self.actions.append(("fill", text))

    async def press(self, key, timeout=None):
        self.actions.append(("press", key))

    async def wait_for(self, state=None, timeout=None):
        self.actions.append(("wait_for", state))

    async def scroll_into_view_if_needed(self, timeout=None):
        self.actions.append(("scroll", None))


class FakePage:
    """Page double that emits Playwright-style request/response events."""

    def __init__(self, title: str = "Fake Page"):
        self.url = "about:blank"
        self._title = title
        self._handlers: Dict[str, List[Callable]] = {}
        self.closed = False
        self.goto_error: Optional[Exception] = None
        self.visited: List[str] = []

    def on(self, event: str, handler: Callable) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, payload: Any) -> None:
        for handler in self._handlers.get(event, []):
            handler(payload)

    def request(self, url: str, status: int = 200) -> FakeRequest:
        """Simulate one completed request."""
        request = FakeRequest(url)
        self.emit("request", request)
        self.emit("response", FakeResponse(request, status))
        return request

    def is_closed(self) -> bool:
        return self.closed

    async def goto(self, url, timeout=None, wait_until=None):
        await asyncio.sleep(0)
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url
        self.visited.append(url)
        self.request(url)
        return SimpleNamespace(status=200)

    async def title(self) -> str:
        return self._title

    async def evaluate(self, script):
        return None

    async def inner_text(self, selector):
        return f"text of {self.url}"


class FakeConnection:
    def __init__(self, connector: "FakeConnector", page: FakePage, reused: bool):
        self.connector = connector
        self.page = page
        self.reused = reused
        self.connected = True
        self.closed = False
        self._callbacks: List[Callable[[], None]] = []
        self.locators: Dict[int, FakeLocator] = {}

    def is_connected(self) -> bool:
        return self.connected

    def on_disconnected(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def drop(self) -> None:
        """Simulate the transport going away."""
        self.connected = False
        for callback in list(self._callbacks):
            callback()

    async def acquire_page(self):
        return self.page, self.reused

    async def accessibility_tree(self, page) -> AccessibilityNode:
        await asyncio.sleep(0)
        if not self.connected:
            raise TransportError("connection closed")
        return self.connector.tree

    async def locate(self, page, element: FilteredElement) -> FakeLocator:
        locator = self.locators.setdefault(element.ref, FakeLocator(element))
        return locator

    async def close(self) -> None:
        self.closed = True
        self.connected = False


class FakeConnector:
    """Connector double; ``fail_next`` makes the next N connects fail."""

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.connections: List[FakeConnection] = []
        self.fail_next = 0
        self.reuse_pages = True
        self.tree = AccessibilityNode(role="RootWebArea", name="Fake", children=[
            AccessibilityNode(role="link", name="Home"),
            AccessibilityNode(role="button", name="Search"),
        ])

    async def connect(self, endpoint: str, session_token: str) -> FakeConnection:
        self.calls.append((endpoint, session_token))
        await asyncio.sleep(0)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise TransportError("connection refused")
        connection = FakeConnection(self, FakePage(), reused=self.reuse_pages)
        self.connections.append(connection)
        return connection


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_store(connector, clock) -> SessionStore:
    return SessionStore(
        connector=connector,
        endpoint_resolver=StaticEndpointResolver("ws://browser.test:9222"),
        max_attempts=3,
        backoff=0,
        navigation_timeout=5,
        clock=clock,
    )


@pytest.fixture
def dispatcher() -> ToolDispatcher:
    return ToolDispatcher()


@pytest.fixture
def gateway(monkeypatch, session_store, dispatcher):
    """Publish a stub gateway for tool bodies; tests attach an ``api_client`` as needed."""
    stub = SimpleNamespace(session_store=session_store, dispatcher=dispatcher, api_client=None)
    monkeypatch.setattr(webgate_mcp_server.core, "_gateway_instance", stub)
    return stub


@pytest.fixture(autouse=True)
def reset_config():
    """Keep the global configuration from leaking between tests."""
    yield
    config_module.set_config(None)

"""
Per-domain browser session store.

One remote browser endpoint is multiplexed into isolated sessions, one per
hostname. Each session owns its connection, its page and the log of network
traffic seen on that page; nothing is shared between domains.

Session state machine::

    disconnected --connect--> connecting --ok--> connected
    connected --transport drop--> reconnecting --ok--> connected
    connecting | reconnecting --retry budget exhausted--> failed

``failed`` is terminal for a Session object: the next ``get_or_create_session``
for that domain builds a brand new Session instead of resurrecting it.

Every transition that suspends (connecting, reconnecting) runs under a
per-domain ``asyncio.Lock``, so two concurrent calls for the same domain never
race: the second waits for the first attempt and reuses its result.

Cross-domain navigation follows a "one session per hostname, spawn new" policy:
navigating a session to another host fetches (or creates) the session for that
host and leaves the original untouched.
"""
import asyncio
import itertools
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar, Union
from urllib.parse import urlsplit

from webgate_mcp_server.browser.connection import (
    BrowserConnection,
    BrowserConnector,
    TransportError,
    session_token_for,
)
from webgate_mcp_server.browser.snapshot import (
    AccessibilityNode,
    FilteredElement,
    FilterOptions,
    Snapshot,
    SnapshotFilter,
)
from webgate_mcp_server.exceptions import (
    BrowserConnectionError,
    ElementNotFoundError,
    NavigationError,
    ToolError,
    ToolInputError,
)
from webgate_mcp_server.utils import get_logger

logger = get_logger("webgate_mcp_server.browser.session_store")

T = TypeVar("T")

# Failures that mean the transport is gone rather than the action being wrong
RETRYABLE_CONNECT_ERRORS = (TransportError, OSError, asyncio.TimeoutError)


class ConnectionState(str, Enum):
    """Lifecycle of one Session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


def normalize_domain(value: str) -> str:
    """Normalize a URL or host to the hostname used as the session key.

    Raises:
        ToolInputError: If no hostname can be extracted
    """
    text = (value or "").strip()
    parts = urlsplit(text if "://" in text else f"//{text}")
    host = (parts.hostname or "").rstrip(".").lower()
    if not host:
        raise ToolInputError(f"Cannot determine a domain from '{value}'", param_name="url", provided_value=value)
    return host


@dataclass
class NetworkEntry:
    """One request seen by a page, completed by its response or failure."""
    seq: int
    method: str
    url: str
    resource_type: str = ""
    status: Optional[int] = None
    status_text: str = ""
    failure: Optional[str] = None

    def format(self) -> str:
        if self.failure:
            outcome = f"failed: {self.failure}"
        elif self.status is None:
            outcome = "pending"
        else:
            outcome = f"[{self.status}] {self.status_text}".rstrip()
        return f"[{self.method}] {self.url} => {outcome}"


class NetworkLog:
    """Append-only log of request/response pairs for one page.

    The page's event subscription is the only writer. Entries keep the order in
    which request events arrive; a response completes the entry opened by its
    request. Responses for requests recorded before the last ``clear`` are
    dropped.
    """

    def __init__(self):
        self._entries: List[NetworkEntry] = []
        self._open: Dict[Any, NetworkEntry] = {}
        self._seq = itertools.count(1)

    def record_request(self, key: Any, method: str, url: str, resource_type: str = "") -> NetworkEntry:
        entry = NetworkEntry(seq=next(self._seq), method=method, url=url, resource_type=resource_type)
        self._entries.append(entry)
        self._open[key] = entry
        return entry

    def record_response(self, key: Any, status: int, status_text: str = "") -> None:
        entry = self._open.pop(key, None)
        if entry is not None:
            entry.status = status
            entry.status_text = status_text

    def record_failure(self, key: Any, failure: Optional[str]) -> None:
        entry = self._open.pop(key, None)
        if entry is not None:
            entry.failure = failure or "unknown error"

    @property
    def last_seq(self) -> int:
        return self._entries[-1].seq if self._entries else 0

    def discard_through(self, seq: int) -> None:
        """Drop entries recorded up to and including ``seq``."""
        kept = [entry for entry in self._entries if entry.seq > seq]
        dropped = {id(entry) for entry in self._entries if entry.seq <= seq}
        self._entries = kept
        self._open = {key: entry for key, entry in self._open.items() if id(entry) not in dropped}

    def clear(self) -> None:
        self._entries = []
        self._open = {}

    def entries(self) -> List[NetworkEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(eq=False)
class Session:
    """A live (or dying) browser session bound to one domain."""
    domain: str
    state: ConnectionState = ConnectionState.DISCONNECTED
    connection: Optional[BrowserConnection] = None
    page: Any = None
    network_log: NetworkLog = field(default_factory=NetworkLog)
    last_activity_at: float = field(default_factory=time.monotonic)
    snapshot: Optional[Snapshot] = None
    reconnect_count: int = 0

    def touch(self, now: Optional[float] = None) -> None:
        self.last_activity_at = time.monotonic() if now is None else now

    @property
    def transport_alive(self) -> bool:
        if self.connection is None or not self.connection.is_connected():
            return False
        is_closed = getattr(self.page, "is_closed", None)
        return not (callable(is_closed) and is_closed())

    def describe(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "state": self.state.value,
            "url": getattr(self.page, "url", None),
            "network_requests": len(self.network_log),
            "reconnects": self.reconnect_count,
            "snapshot_elements": len(self.snapshot.elements) if self.snapshot else 0,
        }


@dataclass
class _DomainLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionStore:
    """Owns every Session and its page; the only writer of session state.

    Args:
        connector: Opens connections to the remote browser
        endpoint_resolver: Async callable returning the endpoint address
        snapshot_filter: Filter used by ``capture_snapshot``
        max_attempts: Connection attempts per connect or reconnect
        backoff: Delay before the second attempt; doubles for each further attempt
        navigation_timeout: Page load timeout in seconds
        clock: Monotonic clock, injectable for idle cleanup tests
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        connector: BrowserConnector,
        endpoint_resolver: Callable[[], Awaitable[str]],
        snapshot_filter: Optional[SnapshotFilter] = None,
        max_attempts: int = 3,
        backoff: float = 0.5,
        navigation_timeout: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.connector = connector
        self.endpoint_resolver = endpoint_resolver
        self.snapshot_filter = snapshot_filter or SnapshotFilter()
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.navigation_timeout = navigation_timeout
        self._clock = clock
        self._sleep = sleep
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, _DomainLock] = {}
        self._active_domain: Optional[str] = None

    # --- Lookup ---

    @asynccontextmanager
    async def _domain_lock(self, domain: str) -> AsyncIterator[None]:
        """Hold the domain's lock; it is forgotten once nobody holds or awaits it."""
        entry = self._locks.get(domain)
        if entry is None:
            entry = self._locks[domain] = _DomainLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(domain) is entry:
                del self._locks[domain]

    def _is_busy(self, domain: str) -> bool:
        entry = self._locks.get(domain)
        return entry is not None and entry.users > 0

    def get(self, domain: str) -> Optional[Session]:
        return self._sessions.get(normalize_domain(domain))

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    @property
    def active_domain(self) -> Optional[str]:
        return self._active_domain

    async def active_session(self) -> Session:
        """Session of the most recent successful navigation."""
        if self._active_domain is None:
            raise ToolInputError("No page is open. Call scraping_browser_navigate first.")
        return await self.get_or_create_session(self._active_domain)

    # --- Connection state machine ---

    async def get_or_create_session(self, domain: str) -> Session:
        """Return a connected session for ``domain``, connecting if needed.

        Raises:
            BrowserConnectionError: If the retry budget is exhausted
        """
        domain = normalize_domain(domain)
        session = self._sessions.get(domain)
        if session is not None and session.state == ConnectionState.CONNECTED and session.transport_alive:
            session.touch(self._clock())
            return session

        async with self._domain_lock(domain):
            session = self._sessions.get(domain)
            if session is None or session.state == ConnectionState.FAILED:
                session = Session(domain=domain, last_activity_at=self._clock())
                self._sessions[domain] = session

            if session.state == ConnectionState.CONNECTED:
                if session.transport_alive:
                    session.touch(self._clock())
                    return session
                self._mark_dropped(session)

            if session.state == ConnectionState.RECONNECTING:
                await self._reconnect(session)
            else:
                await self._connect(session)
            session.touch(self._clock())
            return session

    async def _connect(self, session: Session) -> None:
        session.state = ConnectionState.CONNECTING
        logger.info("Connecting remote browser session", emoji_key="connection", domain=session.domain)
        await self._attempt(session, preserve_page_state=False)
        logger.success("Browser session connected", emoji_key="connection", domain=session.domain)

    async def _reconnect(self, session: Session) -> None:
        logger.warning("Reconnecting remote browser session", emoji_key="reconnect", domain=session.domain)
        await self._attempt(session, preserve_page_state=True)
        session.reconnect_count += 1
        logger.success("Browser session reconnected", emoji_key="reconnect", domain=session.domain)

    async def _attempt(self, session: Session, preserve_page_state: bool) -> None:
        """Run the bounded retry loop; leaves the session connected or failed."""
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1 and self.backoff > 0:
                await self._sleep(self.backoff * (2 ** (attempt - 2)))
            try:
                await self._establish(session, preserve_page_state)
            except RETRYABLE_CONNECT_ERRORS as e:
                last_error = e
                logger.warning(
                    f"Browser connection attempt {attempt}/{self.max_attempts} failed: {e}",
                    emoji_key="connection",
                    domain=session.domain,
                )
                continue
            except BaseException:
                session.state = ConnectionState.FAILED
                raise
            session.state = ConnectionState.CONNECTED
            return

        session.state = ConnectionState.FAILED
        await self._release(session)
        raise BrowserConnectionError(
            f"Could not connect to the remote browser for {session.domain} "
            f"after {self.max_attempts} attempts: {last_error}",
            details={"domain": session.domain, "attempts": self.max_attempts},
        )

    async def _establish(self, session: Session, preserve_page_state: bool) -> None:
        """Open a connection, acquire a page and wire up network tracking."""
        endpoint = await self.endpoint_resolver()
        connection = await self.connector.connect(endpoint, session_token_for(session.domain))
        try:
            page, reused = await connection.acquire_page()
        except BaseException:
            await self._close_quietly(connection)
            raise

        previous = session.connection
        if not (preserve_page_state and reused):
            # A new page starts a new log; events of the old page can never reach it
            session.network_log = NetworkLog()
            session.snapshot = None
        self._subscribe(page, session.network_log)
        session.connection = connection
        session.page = page
        connection.on_disconnected(lambda: self._handle_disconnect(session, connection))

        if previous is not None and previous is not connection:
            await self._close_quietly(previous)

    def _subscribe(self, page: Any, network_log: NetworkLog) -> None:
        page.on("request", lambda request: network_log.record_request(
            request, request.method, request.url, request.resource_type))
        page.on("response", lambda response: network_log.record_response(
            response.request, response.status, response.status_text))
        page.on("requestfailed", lambda request: network_log.record_failure(request, request.failure))

    def _handle_disconnect(self, session: Session, connection: BrowserConnection) -> None:
        if session.connection is connection and session.state == ConnectionState.CONNECTED:
            self._mark_dropped(session)

    def _mark_dropped(self, session: Session) -> None:
        logger.warning("Remote browser transport dropped", emoji_key="connection", domain=session.domain)
        session.state = ConnectionState.RECONNECTING

    def _is_transport_failure(self, session: Session, exc: BaseException) -> bool:
        return isinstance(exc, TransportError) or not session.transport_alive

    async def _recover(self, session: Session) -> Session:
        """Bring ``session`` back to connected, or hand out a fresh one if it failed."""
        if session.state == ConnectionState.FAILED or self._sessions.get(session.domain) is not session:
            return await self.get_or_create_session(session.domain)
        async with self._domain_lock(session.domain):
            if session.state == ConnectionState.CONNECTED and session.transport_alive:
                return session
            if session.state == ConnectionState.FAILED:
                raise BrowserConnectionError(
                    f"The browser session for {session.domain} failed. Navigate again to start a new one."
                )
            session.state = ConnectionState.RECONNECTING
            await self._reconnect(session)
            return session

    # --- Page operations ---

    async def execute(self, session: Session, action: Callable[[Session], Awaitable[T]]) -> T:
        """Run ``action(session)`` against the session's page.

        A transport failure while the action runs triggers a reconnect within
        the retry budget, after which the action is re-run. Failures that are
        not transport failures propagate unchanged.

        Raises:
            BrowserConnectionError: If the session cannot be brought back
        """
        last_error: Optional[BaseException] = None
        for _ in range(self.max_attempts):
            if session.state != ConnectionState.CONNECTED or not session.transport_alive:
                session = await self._recover(session)
            try:
                result = await action(session)
            except ToolError:
                raise
            except Exception as e:
                if not self._is_transport_failure(session, e):
                    raise
                last_error = e
                if session.state == ConnectionState.CONNECTED:
                    self._mark_dropped(session)
                continue
            session.touch(self._clock())
            return result

        async with self._domain_lock(session.domain):
            session.state = ConnectionState.FAILED
            await self._release(session)
        raise BrowserConnectionError(
            f"Lost the remote browser connection for {session.domain}: {last_error}",
            details={"domain": session.domain},
        )

    async def navigate(self, session: Session, url: str, clear_requests: bool = True) -> Session:
        """Load ``url`` and make the navigated session the active one.

        If ``url`` points at another host, the session for that host is used
        (created if needed); ``session`` itself is left as it was. On success
        the network log keeps only traffic from this navigation onwards, unless
        ``clear_requests`` is False.

        Returns:
            The session the page was loaded in
        """
        if not url.startswith(("http://", "https://")):
            raise ToolInputError("URL must start with http:// or https://", param_name="url", provided_value=url)
        domain = normalize_domain(url)
        if domain != session.domain:
            session = await self.get_or_create_session(domain)

        async def go(current: Session):
            mark = current.network_log.last_seq
            try:
                await current.page.goto(url, timeout=self.navigation_timeout * 1000, wait_until="domcontentloaded")
            except Exception as e:
                if self._is_transport_failure(current, e):
                    raise
                raise NavigationError(f"Navigation to {url} failed: {e}", details={"url": url}) from e
            if clear_requests:
                current.network_log.discard_through(mark)
            current.snapshot = None
            return current

        session = await self.execute(session, go)
        self._active_domain = session.domain
        logger.info("Navigated", emoji_key="browser", domain=session.domain, url=url)
        return session

    async def capture_snapshot(
        self, session: Session, filtered: bool = True
    ) -> Union[Snapshot, AccessibilityNode]:
        """Read the page's accessibility tree.

        Returns:
            The filtered Snapshot (also stored on the session for ref lookups)
            when ``filtered`` is True, otherwise the raw AccessibilityNode tree
        """
        tree = await self.execute(session, lambda current: current.connection.accessibility_tree(current.page))
        if not filtered:
            return tree
        return await self._store_snapshot(session, tree, self.snapshot_filter.default_options)

    async def capture_full_snapshot(self, session: Session) -> Snapshot:
        """Snapshot where every node, interactive or not, receives a ref."""
        tree = await self.capture_snapshot(session, filtered=False)
        options = FilterOptions(
            interactive_only=False,
            max_name_length=self.snapshot_filter.default_options.max_name_length,
        )
        return await self._store_snapshot(session, tree, options)

    async def _store_snapshot(self, session: Session, tree: AccessibilityNode, options: FilterOptions) -> Snapshot:
        async def read_page(current: Session):
            return current, current.page.url, await current.page.title()

        current, url, title = await self.execute(session, read_page)
        snapshot = self.snapshot_filter.snapshot(tree, options, url=url, title=title)
        current.snapshot = snapshot
        logger.debug(f"Captured snapshot with {len(snapshot.elements)} elements", emoji_key="snapshot",
                     domain=current.domain)
        return snapshot

    def resolve_ref(self, session: Session, ref: int) -> FilteredElement:
        """Look up an element of the session's latest snapshot."""
        if session.snapshot is None:
            raise ElementNotFoundError(
                "No snapshot has been captured for this page. Call scraping_browser_snapshot first.",
                param_name="ref",
                provided_value=ref,
            )
        element = session.snapshot.find(ref)
        if element is None:
            raise ElementNotFoundError(
                f"Ref {ref} is not in the latest snapshot. Capture a new snapshot and use one of its refs.",
                param_name="ref",
                provided_value=ref,
            )
        return element

    def clear_requests(self, session: Session) -> None:
        session.network_log.clear()

    # --- Teardown ---

    async def _close_quietly(self, connection: BrowserConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.warning(f"Error closing browser connection: {e}")

    async def _release(self, session: Session) -> None:
        connection, session.connection, session.page = session.connection, None, None
        if connection is not None:
            await self._close_quietly(connection)

    async def close_session(self, domain: str) -> bool:
        """Close and forget the session for ``domain``."""
        domain = normalize_domain(domain)
        async with self._domain_lock(domain):
            session = self._sessions.pop(domain, None)
            if session is None:
                return False
            session.state = ConnectionState.DISCONNECTED
            await self._release(session)
        if self._active_domain == domain:
            self._active_domain = None
        logger.info("Closed browser session", emoji_key="browser", domain=domain)
        return True

    async def close_idle_sessions(self, max_idle: float) -> List[str]:
        """Close sessions idle for at least ``max_idle`` seconds; busy domains are skipped."""
        now = self._clock()
        idle = [
            session.domain for session in self._sessions.values()
            if now - session.last_activity_at >= max_idle and not self._is_busy(session.domain)
        ]
        for domain in idle:
            await self.close_session(domain)
        return idle

    async def close_all(self) -> None:
        """Release every session's connection (process shutdown)."""
        domains = list(self._sessions)
        await asyncio.gather(*(self.close_session(domain) for domain in domains))
        self._active_domain = None

"""
Client for the unblocking, collection and zone management API.

All calls are authenticated with the bearer API token. Scraping goes through
``POST /request`` on the unlocker zone; structured collection triggers a
dataset run and polls its snapshot until it leaves the pending statuses or the
polling ceiling is reached.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote_plus

import httpx

from webgate_mcp_server import __version__
from webgate_mcp_server.constants import DEFAULT_API_BASE_URL, DEFAULT_POLL_TIMEOUT, PENDING_SNAPSHOT_STATUSES, SearchEngine
from webgate_mcp_server.exceptions import ExternalServiceError, PollingTimeoutError, ToolInputError
from webgate_mcp_server.utils import get_logger
from webgate_mcp_server.utils.retry import with_retry

logger = get_logger("webgate_mcp_server.services.api_client")

ProgressCallback = Callable[[float, Optional[float], Optional[str]], Awaitable[None]]

# Connection-level failures that are safe to retry
RETRYABLE_HTTP_ERRORS = [httpx.ConnectError, httpx.RemoteProtocolError]


def search_url(query: str, engine: str = SearchEngine.GOOGLE.value, cursor: Optional[str] = None) -> str:
    """Build the results page URL for a search engine query.

    Args:
        query: Search terms
        engine: One of ``google``, ``bing`` or ``yandex``
        cursor: Zero-based page number, as a string

    Raises:
        ToolInputError: For an unknown engine or a malformed cursor
    """
    try:
        engine = SearchEngine(engine).value
    except ValueError:
        allowed = ", ".join(e.value for e in SearchEngine)
        raise ToolInputError(f"Unsupported search engine '{engine}'. Use one of: {allowed}",
                             param_name="engine", provided_value=engine) from None
    page = 0
    if cursor:
        if not str(cursor).isdigit():
            raise ToolInputError("Cursor must be a page number", param_name="cursor", provided_value=cursor)
        page = int(cursor)

    q = quote_plus(query)
    if engine == SearchEngine.GOOGLE.value:
        return f"https://www.google.com/search?q={q}&start={page * 10}"
    if engine == SearchEngine.BING.value:
        return f"https://www.bing.com/search?q={q}&first={page * 10 + 1}"
    return f"https://yandex.com/search/?text={q}&p={page}"


class ApiClient:
    """Async client for the unblocking service API.

    Args:
        api_token: Bearer token
        unlocker_zone: Zone used for ``/request`` calls
        base_url: API base URL
        request_timeout: Timeout of one HTTP request in seconds
        poll_timeout: Ceiling for snapshot polling in seconds
        poll_interval: Delay between snapshot polls in seconds
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        api_token: str,
        unlocker_zone: str,
        base_url: str = DEFAULT_API_BASE_URL,
        request_timeout: float = 180.0,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        poll_interval: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.unlocker_zone = unlocker_zone
        self.poll_timeout = poll_timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_token}",
                "User-Agent": f"webgate-mcp-server/{__version__}",
            },
            timeout=request_timeout,
            transport=transport,
        )

    @with_retry(max_retries=2, retry_delay=1.0, retry_exceptions=RETRYABLE_HTTP_ERRORS)
    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        return await self._client.request(method, path, **kwargs)

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"{method} {path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            body = response.text[:300]
            raise ExternalServiceError(
                f"{method} {path} returned HTTP {response.status_code}: {body}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(f"Expected JSON from {response.request.url.path}: {e}") from e

    # --- Unlocker ---

    async def request(self, url: str, data_format: Optional[str] = None, zone: Optional[str] = None) -> str:
        """Fetch ``url`` through the unlocker zone and return the body as text."""
        payload: Dict[str, Any] = {"url": url, "zone": zone or self.unlocker_zone, "format": "raw"}
        if data_format:
            payload["data_format"] = data_format
        logger.debug("Unlocker request", emoji_key="request", url=url, zone=payload["zone"])
        response = await self._send("POST", "/request", json=payload)
        return response.text

    async def scrape_markdown(self, url: str) -> str:
        return await self.request(url, data_format="markdown")

    async def scrape_html(self, url: str) -> str:
        return await self.request(url)

    async def search(self, query: str, engine: str = SearchEngine.GOOGLE.value, cursor: Optional[str] = None) -> str:
        """Search results page rendered as markdown."""
        return await self.request(search_url(query, engine, cursor), data_format="markdown")

    # --- Datasets ---

    async def trigger_dataset(self, dataset_id: str, inputs: List[Dict[str, Any]]) -> str:
        """Start a collection run and return its snapshot id."""
        response = await self._send(
            "POST",
            "/datasets/v3/trigger",
            params={"dataset_id": dataset_id, "include_errors": "true"},
            json=inputs,
        )
        data = self._json(response)
        snapshot_id = data.get("snapshot_id") if isinstance(data, dict) else None
        if not snapshot_id:
            raise ExternalServiceError(f"Dataset {dataset_id} did not return a snapshot id", details={"response": data})
        logger.info("Triggered dataset collection", emoji_key="dataset", dataset=dataset_id, snapshot=snapshot_id)
        return snapshot_id

    async def get_snapshot(self, snapshot_id: str) -> Any:
        response = await self._send("GET", f"/datasets/v3/snapshot/{snapshot_id}", params={"format": "json"})
        return self._json(response)

    async def poll_snapshot(self, snapshot_id: str, progress: Optional[ProgressCallback] = None) -> Any:
        """Poll a snapshot until it is ready.

        Args:
            snapshot_id: Id returned by ``trigger_dataset``
            progress: Called after every pending poll with ``(attempt, None, message)``

        Returns:
            The terminal snapshot payload

        Raises:
            PollingTimeoutError: The snapshot is still pending after ``poll_timeout`` seconds
        """
        started = self._clock()
        attempt = 0
        while True:
            data = await self.get_snapshot(snapshot_id)
            status = data.get("status") if isinstance(data, dict) else None
            if status not in PENDING_SNAPSHOT_STATUSES:
                return data

            elapsed = self._clock() - started
            if elapsed >= self.poll_timeout:
                raise PollingTimeoutError(
                    f"Snapshot {snapshot_id} was still '{status}' after {self.poll_timeout:g} seconds",
                    details={"snapshot_id": snapshot_id, "status": status},
                )
            attempt += 1
            if progress is not None:
                await progress(attempt, None, f"Snapshot {snapshot_id} is {status} ({elapsed:.0f}s elapsed)")
            await self._sleep(self.poll_interval)

    async def collect(
        self, dataset_id: str, inputs: List[Dict[str, Any]], progress: Optional[ProgressCallback] = None
    ) -> Any:
        """Trigger a collection run and wait for its result."""
        snapshot_id = await self.trigger_dataset(dataset_id, inputs)
        return await self.poll_snapshot(snapshot_id, progress)

    # --- Account and zones ---

    async def customer_id(self) -> str:
        data = self._json(await self._send("GET", "/status"))
        customer = data.get("customer") if isinstance(data, dict) else None
        if not customer:
            raise ExternalServiceError("Account status did not include a customer id")
        return str(customer)

    async def zone_password(self, zone: str) -> str:
        data = self._json(await self._send("GET", "/zone/passwords", params={"zone": zone}))
        passwords = data.get("passwords") if isinstance(data, dict) else None
        if not passwords:
            raise ExternalServiceError(f"No password is configured for zone '{zone}'")
        return passwords[0]

    async def active_zones(self) -> List[Dict[str, Any]]:
        data = self._json(await self._send("GET", "/zone/get_active_zones"))
        return data if isinstance(data, list) else []

    async def create_zone(self, name: str, zone_type: str) -> None:
        await self._send("POST", "/zone", json={"zone": {"name": name, "type": zone_type}, "plan": {"type": zone_type}})
        logger.success(f"Created zone '{name}'", emoji_key="config", zone_type=zone_type)

    async def aclose(self) -> None:
        await self._client.aclose()

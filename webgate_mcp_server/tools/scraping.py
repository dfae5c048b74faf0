"""Search and scraping tools backed by the unlocker zone."""
import asyncio
import json
from typing import Any, Dict, List, Optional

from mcp.shared.exceptions import McpError
from mcp.types import SamplingMessage, TextContent
from pydantic import BaseModel, Field

from webgate_mcp_server.constants import SearchEngine
from webgate_mcp_server.core.dispatcher import ToolContext
from webgate_mcp_server.exceptions import ToolError, ToolInputError
from webgate_mcp_server.tools.base import require_gateway
from webgate_mcp_server.utils import get_logger

logger = get_logger("webgate_mcp_server.tools.scraping")

MAX_BATCH_SIZE = 10
# Markdown handed to the client's model for extraction is capped to keep the sampling request reasonable
MAX_EXTRACT_CHARS = 50_000

DEFAULT_EXTRACTION_PROMPT = (
    "Extract the main content of this page as structured JSON. "
    "Include only information present on the page."
)


class SearchQuery(BaseModel):
    """One query of a batch search."""
    query: str = Field(description="Search terms")
    engine: SearchEngine = Field(SearchEngine.GOOGLE, description="Search engine to use")
    cursor: Optional[str] = Field(None, description="Zero-based results page number")


def _validate_url(url: str, param_name: str = "url") -> str:
    url = (url or "").strip()
    if not url.startswith(("http://", "https://")):
        raise ToolInputError("URL must start with http:// or https://", param_name=param_name, provided_value=url)
    return url


def _check_batch(items: List[Any], param_name: str) -> None:
    if not items:
        raise ToolInputError(f"'{param_name}' must contain at least one item", param_name=param_name)
    if len(items) > MAX_BATCH_SIZE:
        raise ToolInputError(
            f"'{param_name}' accepts at most {MAX_BATCH_SIZE} items, got {len(items)}",
            param_name=param_name,
            provided_value=len(items),
        )


def _batch_results(keys: List[Dict[str, Any]], outcomes: List[Any]) -> str:
    """Merge per-item outcomes; user-facing errors stay per item, anything else fails the batch."""
    results = []
    for key, outcome in zip(keys, outcomes):
        if isinstance(outcome, ToolError):
            results.append({**key, "error": outcome.message})
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results.append({**key, "result": outcome})
    return json.dumps(results, indent=2, ensure_ascii=False)


async def search_engine(
    query: str,
    engine: SearchEngine = SearchEngine.GOOGLE,
    cursor: Optional[str] = None,
    ctx: ToolContext = None,
) -> str:
    """Search Google, Bing or Yandex and return the results page as markdown.

    Args:
        query: Search terms.
        engine: Search engine (google, bing or yandex). Defaults to google.
        cursor: Zero-based results page number, for fetching further pages.

    Returns:
        The search results page rendered as markdown.
    """
    if not query or not query.strip():
        raise ToolInputError("Query must not be empty", param_name="query", provided_value=query)
    api = require_gateway().api_client
    return await api.search(query.strip(), SearchEngine(engine).value, cursor)


async def scrape_as_markdown(url: str, ctx: ToolContext = None) -> str:
    """Scrape a single page, bypassing bot detection and CAPTCHAs, and return it as markdown.

    Args:
        url: Page URL (http or https).
    """
    api = require_gateway().api_client
    return await api.scrape_markdown(_validate_url(url))


async def scrape_as_html(url: str, ctx: ToolContext = None) -> str:
    """Scrape a single page, bypassing bot detection and CAPTCHAs, and return the raw HTML.

    Args:
        url: Page URL (http or https).
    """
    api = require_gateway().api_client
    return await api.scrape_html(_validate_url(url))


async def search_engine_batch(queries: List[SearchQuery], ctx: ToolContext = None) -> str:
    """Run up to 10 searches concurrently.

    Args:
        queries: Search queries, each with optional engine and cursor.

    Returns:
        JSON list with one entry per query holding either ``result`` (markdown)
        or ``error``.
    """
    _check_batch(queries, "queries")
    api = require_gateway().api_client
    queries = [q if isinstance(q, SearchQuery) else SearchQuery.model_validate(q) for q in queries]
    outcomes = await asyncio.gather(
        *(api.search(q.query, q.engine.value, q.cursor) for q in queries),
        return_exceptions=True,
    )
    keys = [{"query": q.query, "engine": q.engine.value} for q in queries]
    return _batch_results(keys, outcomes)


async def scrape_batch(urls: List[str], ctx: ToolContext = None) -> str:
    """Scrape up to 10 pages concurrently and return each as markdown.

    Args:
        urls: Page URLs (http or https).

    Returns:
        JSON list with one entry per URL holding either ``result`` or ``error``.
    """
    _check_batch(urls, "urls")
    urls = [_validate_url(url, "urls") for url in urls]
    api = require_gateway().api_client
    outcomes = await asyncio.gather(*(api.scrape_markdown(url) for url in urls), return_exceptions=True)
    return _batch_results([{"url": url} for url in urls], outcomes)


async def extract(url: str, extraction_prompt: Optional[str] = None, ctx: ToolContext = None) -> str:
    """Scrape a page and have the client's model turn it into structured JSON.

    The page is fetched as markdown and sent back to the client through MCP
    sampling together with the extraction prompt; the client's model does the
    extraction.

    Args:
        url: Page URL (http or https).
        extraction_prompt: What to extract. Defaults to the page's main content.

    Returns:
        The model's answer, normally a JSON document.
    """
    url = _validate_url(url)
    mcp_ctx = ctx.mcp_context if ctx is not None else None
    if mcp_ctx is None:
        raise ToolError("The extract tool needs a client that supports MCP sampling.")

    markdown = await require_gateway().api_client.scrape_markdown(url)
    if len(markdown) > MAX_EXTRACT_CHARS:
        markdown = markdown[:MAX_EXTRACT_CHARS]

    prompt = extraction_prompt or DEFAULT_EXTRACTION_PROMPT
    try:
        result = await mcp_ctx.session.create_message(
            messages=[SamplingMessage(
                role="user",
                content=TextContent(type="text", text=f"{prompt}\n\nPage content:\n{markdown}"),
            )],
            max_tokens=2048,
            system_prompt="You extract structured data from web pages and answer with JSON only.",
        )
    except McpError as e:
        raise ToolError(f"The client rejected the sampling request: {e}") from e

    content = result.content
    if getattr(content, "type", None) != "text":
        raise ToolError("The client's model did not return text")
    return content.text

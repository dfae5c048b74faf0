"""Structured data collection tools.

Each catalog entry becomes a ``web_data_<name>`` tool taking a single ``url``.
``web_data_collect`` reaches any dataset by id for everything the catalog does
not cover. Collection triggers a run and polls its snapshot, reporting progress
to the client between polls.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from webgate_mcp_server.core.dispatcher import ToolContext
from webgate_mcp_server.exceptions import ToolInputError
from webgate_mcp_server.tools.base import require_gateway
from webgate_mcp_server.utils import get_logger

logger = get_logger("webgate_mcp_server.tools.datasets")


@dataclass(frozen=True)
class DatasetSpec:
    name: str
    dataset_id: str
    description: str
    url_hint: str


DATASET_CATALOG: Tuple[DatasetSpec, ...] = (
    DatasetSpec(
        name="amazon_product",
        dataset_id="gd_l7q7dkf244hwjntr0",
        description="Quickly read structured Amazon product data.",
        url_hint="a valid Amazon product URL containing /dp/",
    ),
    DatasetSpec(
        name="amazon_product_reviews",
        dataset_id="gd_le8e811kzy4ggddlq",
        description="Quickly read structured Amazon product review data.",
        url_hint="a valid Amazon product URL containing /dp/",
    ),
    DatasetSpec(
        name="linkedin_person_profile",
        dataset_id="gd_l1viktl72bvl7bjuj0",
        description="Quickly read structured LinkedIn people profile data.",
        url_hint="a LinkedIn profile URL (linkedin.com/in/...)",
    ),
    DatasetSpec(
        name="linkedin_company_profile",
        dataset_id="gd_l1vikfnt1wgvvqz95w",
        description="Quickly read structured LinkedIn company profile data.",
        url_hint="a LinkedIn company URL (linkedin.com/company/...)",
    ),
    DatasetSpec(
        name="instagram_profiles",
        dataset_id="gd_l1vikfch901nx3by4",
        description="Quickly read structured Instagram profile data.",
        url_hint="an Instagram profile URL",
    ),
    DatasetSpec(
        name="youtube_videos",
        dataset_id="gd_lk56epmy2i5g7lzu0k",
        description="Quickly read structured YouTube video data.",
        url_hint="a YouTube video URL",
    ),
)


async def _collect(dataset_id: str, inputs: List[Dict[str, Any]], ctx: ToolContext) -> str:
    api = require_gateway().api_client
    progress = ctx.report_progress if ctx is not None else None
    data = await api.collect(dataset_id, inputs, progress)
    return json.dumps(data, indent=2, ensure_ascii=False)


async def web_data_collect(dataset_id: str, inputs: List[Dict[str, Any]], ctx: ToolContext = None) -> str:
    """Collect structured data from any dataset by id.

    Args:
        dataset_id: Dataset id (starts with ``gd_``).
        inputs: One object per record to collect, e.g. ``[{"url": "..."}]``.

    Returns:
        The collected records as JSON.
    """
    if not dataset_id or not dataset_id.startswith("gd_"):
        raise ToolInputError("Dataset id must start with 'gd_'", param_name="dataset_id", provided_value=dataset_id)
    if not inputs:
        raise ToolInputError("At least one input is required", param_name="inputs")
    return await _collect(dataset_id, inputs, ctx)


def make_dataset_tool(spec: DatasetSpec):
    """Build the ``web_data_<name>`` tool function for a catalog entry."""

    async def dataset_tool(url: str, ctx: ToolContext = None) -> str:
        if not url.startswith(("http://", "https://")):
            raise ToolInputError(f"Expected {spec.url_hint}", param_name="url", provided_value=url)
        return await _collect(spec.dataset_id, [{"url": url}], ctx)

    dataset_tool.__name__ = f"web_data_{spec.name}"
    dataset_tool.__qualname__ = dataset_tool.__name__
    dataset_tool.__doc__ = (
        f"{spec.description} Requires {spec.url_hint}. "
        "Often faster and more reliable than scraping the page."
    )
    return dataset_tool


DATASET_TOOLS = tuple(make_dataset_tool(spec) for spec in DATASET_CATALOG)

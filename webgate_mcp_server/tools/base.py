"""Base plumbing shared by all tool modules: descriptors and dispatched handlers."""
import functools
import inspect
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Optional

from mcp.server.fastmcp import Context

from webgate_mcp_server.constants import ToolMode
from webgate_mcp_server.core import get_gateway
from webgate_mcp_server.core.dispatcher import ToolContext, ToolDispatcher
from webgate_mcp_server.exceptions import ToolError

BASE_AND_PRO: FrozenSet[ToolMode] = frozenset({ToolMode.BASE, ToolMode.PRO})
PRO_ONLY: FrozenSet[ToolMode] = frozenset({ToolMode.PRO})


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool entry of the static registry, tagged with the modes it belongs to."""
    name: str
    fn: Callable[..., Any]
    modes: FrozenSet[ToolMode]
    description: Optional[str] = None

    @property
    def summary(self) -> str:
        doc = self.description or inspect.getdoc(self.fn) or ""
        return doc.strip().splitlines()[0] if doc.strip() else ""


def require_gateway():
    """Return the running Gateway or fail the call with a readable message."""
    gateway = get_gateway()
    if gateway is None:
        raise ToolError("The server is still starting up. Retry the call in a moment.")
    return gateway


def dispatched(descriptor: ToolDescriptor, dispatcher: ToolDispatcher) -> Callable[..., Any]:
    """Wrap a tool function so FastMCP invokes it through the dispatcher.

    Tool functions take ``ctx: ToolContext = None``. The handler keeps their
    signature for FastMCP's argument schema but annotates ``ctx`` with the
    FastMCP ``Context`` so the request context is injected; it is converted to
    a ``ToolContext`` before dispatch.
    """
    fn = descriptor.fn

    async def body(arguments, tool_context: ToolContext):
        return await fn(**arguments, ctx=tool_context)

    @functools.wraps(fn)
    async def handler(**kwargs):
        mcp_ctx = kwargs.pop("ctx", None)
        return await dispatcher.dispatch(descriptor.name, kwargs, ToolContext.from_mcp(mcp_ctx), body)

    signature = inspect.signature(fn)
    handler.__signature__ = signature.replace(parameters=[
        param.replace(annotation=Context) if param.name == "ctx" else param
        for param in signature.parameters.values()
    ])
    handler.__annotations__ = {**getattr(fn, "__annotations__", {}), "ctx": Context}
    handler.__name__ = descriptor.name
    return handler

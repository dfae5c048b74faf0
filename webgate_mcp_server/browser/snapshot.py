"""
Accessibility snapshot filtering.

A page's accessibility tree is verbose: most nodes are generic containers and
static text that an agent cannot act on. ``SnapshotFilter`` walks the tree in a
single pre-order pass and keeps only actionable elements, numbering them with
small integer refs the agent can use to target later actions
(``scraping_browser_click_ref`` and friends).

Guarantees:

- Refs are assigned from traversal order alone, so filtering an unchanged tree
  with the same options always yields the same refs and byte-identical output.
- Eliding a node never prunes its subtree; deeply nested interactive
  descendants are always reached.
- ``depth`` counts *kept* ancestors, so indentation preserves ancestry between
  kept elements without re-emitting the elided nodes in between.
- Duplicate names are legal; elements are disambiguated by ref only.

The tree itself is produced from CDP ``Accessibility.getFullAXTree`` output by
``parse_cdp_ax_tree``.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from webgate_mcp_server.constants import INTERACTIVE_ROLES

NAME_ELLIPSIS = "..."


@dataclass
class AccessibilityNode:
    """One node of a page's accessibility tree."""
    role: str
    name: str = ""
    value: Optional[str] = None
    children: List["AccessibilityNode"] = field(default_factory=list)
    locator: Optional[int] = None  # CDP backend DOM node id
    editable: bool = False

    def walk(self) -> Iterable["AccessibilityNode"]:
        """Yield this node and its descendants in pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


@dataclass(frozen=True)
class FilteredElement:
    """An element kept by the filter, addressable by ``ref``."""
    ref: int
    role: str
    name: str
    value: Optional[str]
    depth: int
    locator: Optional[int] = None

    def format(self) -> str:
        line = f'{"  " * self.depth}- [ref={self.ref}] {self.role} "{self.name}"'
        if self.value:
            line += f' value="{self.value}"'
        return line


@dataclass(frozen=True)
class FilterOptions:
    """Options for one filter pass."""
    interactive_only: bool = True
    max_name_length: int = 100
    ref_base: int = 1


@dataclass
class Snapshot:
    """Result of one filter pass over a page, kept on the session to resolve refs."""
    elements: List[FilteredElement]
    url: str = ""
    title: str = ""
    filtered: bool = True

    def find(self, ref: int) -> Optional[FilteredElement]:
        for element in self.elements:
            if element.ref == ref:
                return element
        return None

    def format(self) -> str:
        return format_elements(self.elements)


def is_interactive(node: AccessibilityNode) -> bool:
    """Whether the node is actionable: an interactive role or an editable value."""
    if node.role in INTERACTIVE_ROLES:
        return True
    return bool(node.editable and node.value)


def truncate_name(name: str, max_length: int) -> str:
    name = " ".join((name or "").split())
    if len(name) <= max_length:
        return name
    return name[: max(max_length - len(NAME_ELLIPSIS), 0)] + NAME_ELLIPSIS


class SnapshotFilter:
    """Converts an accessibility tree into a compact, ref-indexed element list."""

    def __init__(self, default_options: Optional[FilterOptions] = None):
        self.default_options = default_options or FilterOptions()

    def filter(self, tree: AccessibilityNode, options: Optional[FilterOptions] = None) -> List[FilteredElement]:
        """Filter ``tree`` in one deterministic pre-order pass.

        Args:
            tree: Root of the accessibility tree
            options: Filter options; the filter's defaults when omitted

        Returns:
            Kept elements in traversal order. Empty when nothing is interactive.
        """
        options = options or self.default_options
        elements: List[FilteredElement] = []
        next_ref = options.ref_base

        # (node, number of kept ancestors)
        stack = [(tree, 0)]
        while stack:
            node, depth = stack.pop()
            keep = not options.interactive_only or is_interactive(node)
            if keep:
                elements.append(FilteredElement(
                    ref=next_ref,
                    role=node.role,
                    name=truncate_name(node.name, options.max_name_length),
                    value=node.value or None,
                    depth=depth,
                    locator=node.locator,
                ))
                next_ref += 1
            child_depth = depth + 1 if keep else depth
            for child in reversed(node.children):
                stack.append((child, child_depth))
        return elements

    def snapshot(
        self,
        tree: AccessibilityNode,
        options: Optional[FilterOptions] = None,
        url: str = "",
        title: str = "",
    ) -> Snapshot:
        """Filter ``tree`` and wrap the result with page metadata."""
        options = options or self.default_options
        return Snapshot(
            elements=self.filter(tree, options),
            url=url,
            title=title,
            filtered=options.interactive_only,
        )


def format_elements(elements: Sequence[FilteredElement]) -> str:
    """One line per element; indentation encodes depth."""
    return "\n".join(element.format() for element in elements)


def _ax_value(node: Dict[str, Any], key: str) -> Any:
    prop = node.get(key)
    if isinstance(prop, dict):
        return prop.get("value")
    return None


def _ax_property(node: Dict[str, Any], name: str) -> Any:
    for prop in node.get("properties") or []:
        if prop.get("name") == name:
            return (prop.get("value") or {}).get("value")
    return None


def parse_cdp_ax_tree(nodes: Sequence[Dict[str, Any]]) -> AccessibilityNode:
    """Build an AccessibilityNode tree from ``Accessibility.getFullAXTree`` nodes.

    Ignored nodes are kept in the tree with role ``none`` so their children
    stay reachable while the filter elides them. Children follow the order of
    ``childIds``.
    """
    if not nodes:
        return AccessibilityNode(role="none")

    by_id: Dict[str, AccessibilityNode] = {}
    child_ids: Dict[str, List[str]] = {}
    root_id: Optional[str] = None

    for raw in nodes:
        node_id = str(raw.get("nodeId"))
        ignored = bool(raw.get("ignored"))
        value = _ax_value(raw, "value")
        editable = _ax_property(raw, "editable")
        by_id[node_id] = AccessibilityNode(
            role="none" if ignored else str(_ax_value(raw, "role") or "none"),
            name="" if ignored else str(_ax_value(raw, "name") or ""),
            value=None if value in (None, "") else str(value),
            locator=raw.get("backendDOMNodeId"),
            editable=editable in ("plaintext", "richtext"),
        )
        child_ids[node_id] = [str(child) for child in raw.get("childIds") or []]
        if root_id is None and not raw.get("parentId"):
            root_id = node_id

    for node_id, node in by_id.items():
        node.children = [by_id[child] for child in child_ids[node_id] if child in by_id]

    if root_id is None:
        root_id = str(nodes[0].get("nodeId"))
    return by_id[root_id]

"""Tests for accessibility snapshot filtering."""
from webgate_mcp_server.browser.snapshot import (
    AccessibilityNode,
    FilterOptions,
    SnapshotFilter,
    format_elements,
    parse_cdp_ax_tree,
    truncate_name,
)
from webgate_mcp_server.utils import get_logger

logger = get_logger("test.snapshot")


def node(role, name="", children=None, value=None, editable=False, locator=None):
    return AccessibilityNode(
        role=role, name=name, value=value, children=children or [], editable=editable, locator=locator
    )


def sample_tree():
    return node("RootWebArea", "Shop", [
        node("navigation", "Main", [
            node("link", "Home", locator=11),
            node("link", "About", locator=12),
        ]),
        node("main", "", [
            node("generic", "", [
                node("button", "Open form", [
                    node("textbox", "Name", value="Ada", locator=21),
                ]),
            ]),
            node("paragraph", "Some text"),
        ]),
        node("group", "", [
            node("heading", "Deals", [
                node("generic", "", [node("link", "Deep deal")]),
            ]),
        ]),
    ])


class TestSnapshotFilter:
    """Tests for SnapshotFilter.filter and formatting."""

    def test_keeps_only_interactive_nodes_in_preorder(self):
        logger.info("Filtering sample tree", emoji_key="test")
        elements = SnapshotFilter().filter(sample_tree())

        assert [(e.ref, e.role, e.name) for e in elements] == [
            (1, "link", "Home"),
            (2, "link", "About"),
            (3, "button", "Open form"),
            (4, "textbox", "Name"),
            (5, "link", "Deep deal"),
        ]

    def test_depth_counts_kept_ancestors_only(self):
        elements = SnapshotFilter().filter(sample_tree())
        depths = {e.name: e.depth for e in elements}
        assert depths == {"Home": 0, "About": 0, "Open form": 0, "Name": 1, "Deep deal": 0}

    def test_format_lines(self):
        snapshot = SnapshotFilter().snapshot(sample_tree(), url="https://shop.test/", title="Shop")
        assert snapshot.format().splitlines() == [
            '- [ref=1] link "Home"',
            '- [ref=2] link "About"',
            '- [ref=3] button "Open form"',
            '  - [ref=4] textbox "Name" value="Ada"',
            '- [ref=5] link "Deep deal"',
        ]
        assert snapshot.url == "https://shop.test/"
        assert snapshot.filtered is True

    def test_same_tree_same_output(self):
        snapshot_filter = SnapshotFilter()
        first = snapshot_filter.filter(sample_tree())
        second = snapshot_filter.filter(sample_tree())
        assert first == second
        assert format_elements(first) == format_elements(second)

    def test_no_interactive_nodes_yields_empty(self):
        tree = node("RootWebArea", "Empty", [node("paragraph", "Hello"), node("heading", "Title")])
        assert SnapshotFilter().filter(tree) == []

    def test_duplicate_names_get_distinct_refs(self):
        tree = node("RootWebArea", "", [node("button", "OK"), node("button", "OK"), node("button", "OK")])
        elements = SnapshotFilter().filter(tree)
        assert [e.ref for e in elements] == [1, 2, 3]
        assert {e.name for e in elements} == {"OK"}

    def test_editable_node_with_value_is_kept(self):
        tree = node("RootWebArea", "", [
            node("generic", "", value="draft text", editable=True),
            node("generic", "", value="", editable=True),
            node("generic", "", value="read only"),
        ])
        elements = SnapshotFilter().filter(tree)
        assert len(elements) == 1
        assert elements[0].value == "draft text"

    def test_long_names_are_truncated(self):
        tree = node("RootWebArea", "", [node("link", "x" * 150)])
        element = SnapshotFilter().filter(tree)[0]
        assert len(element.name) == 100
        assert element.name.endswith("...")

    def test_truncate_collapses_whitespace(self):
        assert truncate_name("  Sign \n in   now ", 100) == "Sign in now"
        assert truncate_name("abcdefghij", 8) == "abcde..."

    def test_full_snapshot_keeps_every_node(self):
        tree = sample_tree()
        elements = SnapshotFilter().filter(tree, FilterOptions(interactive_only=False))
        assert len(elements) == sum(1 for _ in tree.walk())
        assert elements[0].role == "RootWebArea"
        assert elements[0].depth == 0
        assert elements[1].depth == 1

    def test_ref_base_and_locator_carried(self):
        elements = SnapshotFilter().filter(sample_tree(), FilterOptions(ref_base=10))
        assert elements[0].ref == 10
        assert elements[0].locator == 11
        assert SnapshotFilter().snapshot(sample_tree()).find(3).name == "Open form"

    def test_deep_nesting_is_reached(self):
        tree = node("link", "bottom")
        for _ in range(2000):
            tree = node("generic", "", [tree])
        elements = SnapshotFilter().filter(node("RootWebArea", "", [tree]))
        assert [(e.name, e.depth) for e in elements] == [("bottom", 0)]


class TestParseCdpTree:
    """Tests for converting getFullAXTree output."""

    def test_builds_tree_in_child_order(self):
        nodes = [
            {"nodeId": "1", "role": {"value": "RootWebArea"}, "name": {"value": "Page"}, "childIds": ["3", "2"]},
            {"nodeId": "2", "parentId": "1", "role": {"value": "button"}, "name": {"value": "Second"},
             "backendDOMNodeId": 42},
            {"nodeId": "3", "parentId": "1", "ignored": True, "role": {"value": "generic"}, "childIds": ["4"]},
            {"nodeId": "4", "parentId": "3", "role": {"value": "textbox"}, "name": {"value": "Email"},
             "value": {"value": "a@b.c"},
             "properties": [{"name": "editable", "value": {"value": "plaintext"}}]},
        ]
        tree = parse_cdp_ax_tree(nodes)

        assert tree.role == "RootWebArea"
        assert [child.role for child in tree.children] == ["none", "button"]
        textbox = tree.children[0].children[0]
        assert textbox.editable is True
        assert textbox.value == "a@b.c"

        elements = SnapshotFilter().filter(tree)
        assert [(e.ref, e.name, e.locator) for e in elements] == [(1, "Email", None), (2, "Second", 42)]

    def test_empty_input(self):
        assert SnapshotFilter().filter(parse_cdp_ax_tree([])) == []

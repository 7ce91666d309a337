"""
Tests for the Hierarchy Walker.

Covers:
- Flattening nested membership with hierarchy paths
- Cycle protection and repeated nesting
- De-duplication on and off
- Depth cap and per-branch provider failures
"""
import asyncio

import pytest

from m365_tenant_toolkit.directory.models import DirectoryNode
from m365_tenant_toolkit.directory.provider import IdentityNotFound, ProviderError
from m365_tenant_toolkit.directory.snapshot import SnapshotDirectory
from m365_tenant_toolkit.hierarchy.walker import HierarchyWalker


def walk(provider, root, **kwargs):
    return asyncio.run(HierarchyWalker(provider, **kwargs).walk(root))


def names(report):
    return [r.node.display_name for r in report.results]


# =============================================================================
# Flattening
# =============================================================================

class TestFlatten:
    def test_members_in_depth_first_order(self, nested_directory):
        report = walk(nested_directory, "Sales-All")
        assert names(report) == ["Alice", "Bob", "Carol"]

    def test_hierarchy_path_ends_with_direct_parent(self, nested_directory):
        report = walk(nested_directory, "Sales-All")
        by_name = {r.node.display_name: r for r in report.results}
        assert by_name["Alice"].hierarchy_path == ("Sales-All",)
        assert by_name["Bob"].hierarchy_path == ("Sales-All", "Sales-East")
        assert by_name["Bob"].direct_parent.id == "sales-east"
        assert by_name["Bob"].path_label() == "Sales-All > Sales-East"
        assert by_name["Bob"].depth == 2

    def test_root_accepts_resolved_node(self, nested_directory):
        root = nested_directory.node("sales-east")
        report = walk(nested_directory, root)
        assert names(report) == ["Bob", "Carol"]
        assert report.root is root

    def test_every_group_expanded_once(self, nested_directory):
        report = walk(nested_directory, "Sales-All")
        assert report.visited_groups == {"sales-all", "sales-east", "sales-west"}
        # Sales-East is reached again through Sales-West
        assert any("already expanded" in w for w in report.warnings)

    def test_include_groups_adds_group_rows(self, nested_directory):
        report = walk(nested_directory, "Sales-All", include_groups=True)
        assert names(report) == ["Alice", "Sales-East", "Bob", "Carol", "Sales-West"]

    def test_unknown_root_raises(self, nested_directory):
        with pytest.raises(IdentityNotFound):
            walk(nested_directory, "No-Such-Group")

    def test_empty_group(self):
        provider = SnapshotDirectory([DirectoryNode.group("g", "Empty")])
        report = walk(provider, "Empty")
        assert report.results == []
        assert report.complete


# =============================================================================
# De-duplication
# =============================================================================

class TestDeduplication:
    def test_member_reported_once_by_default(self, nested_directory):
        report = walk(nested_directory, "Sales-All")
        assert names(report).count("Carol") == 1

    def test_no_dedup_reports_each_path(self, nested_directory):
        report = walk(nested_directory, "Sales-All", deduplicate=False)
        carol = [r for r in report.results if r.node.id == "carol"]
        assert [r.path_label() for r in carol] == [
            "Sales-All > Sales-East",
            "Sales-All > Sales-West",
        ]

    def test_no_dedup_still_expands_groups_once(self, nested_directory):
        report = walk(nested_directory, "Sales-All", deduplicate=False)
        # Bob only lives in Sales-East, which must not be walked twice
        assert names(report).count("Bob") == 1

    def test_duplicate_edge_treated_as_revisit(self):
        provider = SnapshotDirectory(
            [DirectoryNode.group("p", "P"), DirectoryNode.group("c", "C"), DirectoryNode.user("u", "U")],
            [("p", "c"), ("p", "c"), ("c", "u")],
        )
        report = walk(provider, "P", deduplicate=False)
        assert names(report) == ["U"]
        assert len(report.warnings) == 1


# =============================================================================
# Cycles
# =============================================================================

class TestCycles:
    def test_cycle_terminates_with_all_members(self, cyclic_directory):
        report = walk(cyclic_directory, "A")
        assert sorted(names(report)) == ["Ua", "Ub", "Uc"]
        assert report.visited_groups == {"A", "B", "C"}

    def test_cycle_logged_as_circular(self, cyclic_directory):
        report = walk(cyclic_directory, "A")
        assert len(report.warnings) == 1
        assert report.warnings[0].startswith("Circular nesting detected: A > B > C > A")

    def test_self_membership(self):
        provider = SnapshotDirectory(
            [DirectoryNode.group("g", "Loop"), DirectoryNode.user("u", "U")],
            [("g", "g"), ("g", "u")],
        )
        report = walk(provider, "Loop")
        assert names(report) == ["U"]
        assert "Circular" in report.warnings[0]

    def test_walks_are_independent(self, cyclic_directory):
        walker = HierarchyWalker(cyclic_directory)
        first = asyncio.run(walker.walk("A"))
        second = asyncio.run(walker.walk("B"))
        assert len(first.results) == 3
        assert len(second.results) == 3


# =============================================================================
# Limits and failures
# =============================================================================

class FlakyDirectory(SnapshotDirectory):
    """Fails to list the members of selected groups."""

    def __init__(self, nodes, edges, failing):
        super().__init__(nodes, edges)
        self.failing = set(failing)

    async def get_group_members(self, group_id):
        if group_id in self.failing:
            raise ProviderError(f"503 while reading {group_id}")
        return await super().get_group_members(group_id)


class TestLimits:
    def test_max_depth_stops_expansion(self, nested_directory):
        report = walk(nested_directory, "Sales-All", max_depth=1)
        assert names(report) == ["Alice"]
        assert any("deeper than 1" in w for w in report.warnings)

    def test_failed_branch_does_not_stop_walk(self, nested_directory):
        flaky = FlakyDirectory(
            nested_directory._nodes.values(), nested_directory._edges, failing={"sales-east"},
        )
        report = walk(flaky, "Sales-All")
        assert names(report) == ["Alice", "Carol"]
        assert not report.complete
        assert "Sales-East" in report.errors[0]

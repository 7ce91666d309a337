"""
Group Membership Report
Flattens nested membership of one or more root groups into one row per
member (security groups and nested distribution groups alike).
"""

from __future__ import annotations

import logging

from ..directory.provider import DirectoryProvider, IdentityNotFound, ProviderError
from ..hierarchy.walker import HierarchyWalker
from .base import BaseTask, TaskResult

logger = logging.getLogger("m365_tenant_toolkit.tasks.members")


class GroupMembershipTask(BaseTask):
    name = "members"
    description = "Recursive group membership enumeration"
    columns = [
        "RootGroup", "MemberName", "MemberId", "PrincipalName", "Mail",
        "MemberType", "DirectParent", "HierarchyPath", "Depth", "Status",
    ]

    def __init__(
        self,
        provider: DirectoryProvider,
        groups: list[str],
        deduplicate: bool = True,
        include_groups: bool = False,
        max_depth: int = 100,
    ):
        self.provider = provider
        self.groups = groups
        self.walker = HierarchyWalker(
            provider,
            deduplicate=deduplicate,
            include_groups=include_groups,
            max_depth=max_depth,
        )

    async def run(self, result: TaskResult):
        result.metadata["groups_expanded"] = 0
        for identity in self.groups:
            result.metadata["items_processed"] += 1
            try:
                report = await self.walker.walk(identity)
            except IdentityNotFound as e:
                result.add_warning(str(e))
                result.add_row(self._status_row(identity, "NotFound"))
                continue
            except ProviderError as e:
                result.add_error(f"Could not resolve group '{identity}': {e}")
                result.add_row(self._status_row(identity, "Error"))
                continue

            result.metadata["groups_expanded"] += len(report.visited_groups)
            for w in report.warnings:
                result.add_warning(w)
            for err in report.errors:
                result.add_error(err)

            if not report.results:
                # A root that could not be read is not an empty group
                status = "Empty" if report.complete else "Error"
                result.add_row(self._status_row(report.root.display_name, status))
                continue

            status = "OK" if report.complete else "Partial"
            for r in report.results:
                result.add_row({
                    "RootGroup": report.root.display_name,
                    "MemberName": r.node.display_name,
                    "MemberId": r.node.id,
                    "PrincipalName": r.node.principal_name,
                    "Mail": r.node.mail,
                    "MemberType": r.node.kind.value,
                    "DirectParent": r.direct_parent.display_name,
                    "HierarchyPath": r.path_label(),
                    "Depth": r.depth,
                    "Status": status,
                })

    def _status_row(self, group: str, status: str) -> dict:
        row = {c: "" for c in self.columns}
        row.update({"RootGroup": group, "Status": status})
        return row

"""
Hierarchy Walker — flattens nested group membership.

Depth-first over group → member relations with two independent sets:
  - visited_groups   every group is expanded at most once, so the walk
                     terminates on any finite graph, cycles included
  - seen_member_ids  only consulted when de-duplicating report rows

A group reached a second time is not re-expanded; whatever it produced the
first time stays in the results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

from ..directory.models import DirectoryNode, NodeKind, TraversalResult
from ..directory.provider import DirectoryProvider, ProviderError

logger = logging.getLogger("m365_tenant_toolkit.hierarchy")


@dataclass
class TraversalContext:
    """State owned by a single walk. Never shared between walks."""
    deduplicate: bool = True
    include_groups: bool = False
    max_depth: int = 100
    visited_groups: set[str] = field(default_factory=set)
    seen_member_ids: set[str] = field(default_factory=set)
    active_path: list[str] = field(default_factory=list)
    results: list[TraversalResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def record(self, node: DirectoryNode, parent: DirectoryNode, path: tuple[str, ...]):
        if self.deduplicate:
            if node.id in self.seen_member_ids:
                return
            self.seen_member_ids.add(node.id)
        self.results.append(TraversalResult(node=node, direct_parent=parent, hierarchy_path=path))

    def warn(self, message: str):
        self.warnings.append(message)
        logger.warning(message)

    def error(self, message: str):
        self.errors.append(message)
        logger.error(message)


@dataclass
class WalkReport:
    """Outcome of walking one root group."""
    root: DirectoryNode
    results: list[TraversalResult]
    visited_groups: set[str]
    warnings: list[str]
    errors: list[str]

    @property
    def complete(self) -> bool:
        return not self.errors


class HierarchyWalker:
    """
    Resolves every member reachable from a root group.

    Usage:
        walker = HierarchyWalker(provider, deduplicate=True)
        report = await walker.walk("Sales-All")
        for r in report.results:
            print(r.node.display_name, r.path_label())
    """

    def __init__(
        self,
        provider: DirectoryProvider,
        deduplicate: bool = True,
        include_groups: bool = False,
        max_depth: int = 100,
    ):
        self.provider = provider
        self.deduplicate = deduplicate
        self.include_groups = include_groups
        self.max_depth = max_depth

    async def walk(self, root: Union[str, DirectoryNode]) -> WalkReport:
        """
        Walk from a root group (identity string or resolved node).
        Raises IdentityNotFound if the root does not resolve.
        """
        if isinstance(root, str):
            root = await self.provider.require_group(root)

        ctx = self.new_context()
        logger.info(f"Expanding group '{root.display_name}' ({root.id})")
        await self._expand(root, (root.display_name,), ctx)
        logger.info(
            f"'{root.display_name}': {len(ctx.results)} members, "
            f"{len(ctx.visited_groups)} groups expanded, "
            f"{len(ctx.warnings)} warnings, {len(ctx.errors)} errors"
        )
        return WalkReport(
            root=root,
            results=ctx.results,
            visited_groups=ctx.visited_groups,
            warnings=ctx.warnings,
            errors=ctx.errors,
        )

    def new_context(self) -> TraversalContext:
        return TraversalContext(
            deduplicate=self.deduplicate,
            include_groups=self.include_groups,
            max_depth=self.max_depth,
        )

    async def _expand(self, group: DirectoryNode, path: tuple[str, ...], ctx: TraversalContext):
        if group.id in ctx.visited_groups:
            if group.id in ctx.active_path:
                ctx.warn(f"Circular nesting detected: {' > '.join(path)}; not expanding '{group.display_name}' again")
            else:
                ctx.warn(f"Group '{group.display_name}' already expanded via another path; skipping ({' > '.join(path)})")
            return

        if len(path) > ctx.max_depth:
            ctx.warn(f"Nesting deeper than {ctx.max_depth} levels at '{group.display_name}'; not expanded")
            return

        ctx.visited_groups.add(group.id)
        try:
            members = await self.provider.get_group_members(group.id)
        except ProviderError as e:
            ctx.error(f"Failed to read members of '{group.display_name}': {e}")
            return

        ctx.active_path.append(group.id)
        try:
            for member in members:
                if member.kind is NodeKind.USER:
                    ctx.record(member, group, path)
                elif member.kind is NodeKind.GROUP:
                    if ctx.include_groups:
                        ctx.record(member, group, path)
                    await self._expand(member, path + (member.display_name,), ctx)
                else:
                    raise ValueError(f"Unhandled node kind: {member.kind!r}")
        finally:
            ctx.active_path.pop()

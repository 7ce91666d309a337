"""
Snapshot directory — an in-memory provider loaded from a JSON export.
Used for offline what-if runs and as the test double for the live providers.

Snapshot format:
    {
      "nodes": [{"id": "...", "display_name": "...", "kind": "User|Group",
                 "principal_name": "...", "mail": "...", "scope": "Global"}],
      "edges": [["<parent id>", "<member id>"], ...]
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional

from ..errors import SetupError
from .models import DirectoryNode, GroupScope, MembershipEdge, NodeKind
from .provider import DirectoryProvider, ProviderError

logger = logging.getLogger("m365_tenant_toolkit.directory.snapshot")


class SnapshotDirectory(DirectoryProvider):
    """In-memory directory. Edge order is preserved and duplicates are kept."""

    name = "snapshot"

    def __init__(self, nodes: Iterable[DirectoryNode], edges: Iterable[tuple[str, str]] = ()):
        self._nodes: dict[str, DirectoryNode] = {n.id: n for n in nodes}
        self._edges: list[tuple[str, str]] = []
        for parent_id, member_id in edges:
            for node_id in (parent_id, member_id):
                if node_id not in self._nodes:
                    raise ValueError(f"Edge references unknown node: {node_id}")
            self._edges.append((parent_id, member_id))
        self.scope_changes: list[tuple[str, GroupScope]] = []

    @classmethod
    def from_edges(cls, edges: Iterable[MembershipEdge], extra_nodes: Iterable[DirectoryNode] = ()) -> "SnapshotDirectory":
        nodes: dict[str, DirectoryNode] = {n.id: n for n in extra_nodes}
        pairs = []
        for edge in edges:
            nodes.setdefault(edge.parent.id, edge.parent)
            nodes.setdefault(edge.member.id, edge.member)
            pairs.append((edge.parent.id, edge.member.id))
        return cls(nodes.values(), pairs)

    @classmethod
    def from_file(cls, path: str | Path) -> "SnapshotDirectory":
        """Load a snapshot JSON file. Malformed files are a setup error."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            nodes = [
                DirectoryNode(
                    id=str(n["id"]),
                    display_name=n.get("display_name", n["id"]),
                    kind=NodeKind(n.get("kind", "User")),
                    principal_name=n.get("principal_name", ""),
                    mail=n.get("mail", ""),
                    scope=GroupScope.parse(n["scope"]) if n.get("scope") else None,
                    distinguished_name=n.get("distinguished_name", ""),
                )
                for n in data.get("nodes", [])
            ]
            snapshot = cls(nodes, [(str(p), str(m)) for p, m in data.get("edges", [])])
        except FileNotFoundError:
            raise SetupError(f"Snapshot file not found: {path}")
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            raise SetupError(f"Invalid snapshot file {path}: {e}")
        logger.info(f"Loaded snapshot {path}: {len(snapshot._nodes)} objects, {len(snapshot._edges)} memberships")
        return snapshot

    # ── Lookups ──────────────────────────────────────────────────────────────

    def _match(self, identity: str, kind: NodeKind) -> Optional[DirectoryNode]:
        if identity in self._nodes and self._nodes[identity].kind is kind:
            return self._nodes[identity]
        key = identity.lower()
        for node in self._nodes.values():
            if node.kind is not kind:
                continue
            candidates = (node.display_name, node.principal_name, node.mail, node.distinguished_name)
            if any(c and c.lower() == key for c in candidates):
                return node
        return None

    async def get_group(self, identity: str) -> Optional[DirectoryNode]:
        return self._match(identity, NodeKind.GROUP)

    async def find_object(self, identity: str) -> Optional[DirectoryNode]:
        return self._match(identity, NodeKind.USER) or self._match(identity, NodeKind.GROUP)

    async def get_group_members(self, group_id: str) -> list[DirectoryNode]:
        node = self._nodes.get(group_id)
        if node is None or not node.is_group:
            raise ProviderError(f"Unknown group id: {group_id}")
        return [self._nodes[m] for p, m in self._edges if p == group_id]

    async def get_parent_groups(self, node_id: str) -> list[DirectoryNode]:
        if node_id not in self._nodes:
            raise ProviderError(f"Unknown object id: {node_id}")
        parents: dict[str, DirectoryNode] = {}
        for p, m in self._edges:
            if m == node_id:
                parents.setdefault(p, self._nodes[p])
        return list(parents.values())

    # ── Mutations ────────────────────────────────────────────────────────────

    async def set_group_scope(self, group_id: str, target: GroupScope) -> None:
        node = self._nodes.get(group_id)
        if node is None or not node.is_group:
            raise ProviderError(f"Unknown group id: {group_id}")
        self._nodes[group_id] = replace(node, scope=target)
        self.scope_changes.append((group_id, target))
        logger.debug(f"Snapshot scope change: {node.display_name} -> {target.value}")

    def node(self, node_id: str) -> DirectoryNode:
        return self._nodes[node_id]

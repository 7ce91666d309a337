"""
Directory data models — typed snapshots of users, groups, and the
relations between them as fetched from a directory at run time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class NodeKind(str, Enum):
    """Kinds of directory objects the toolkit understands."""
    USER = "User"
    GROUP = "Group"


class GroupScope(str, Enum):
    """Active Directory group scopes."""
    GLOBAL = "Global"
    UNIVERSAL = "Universal"
    DOMAIN_LOCAL = "DomainLocal"

    @classmethod
    def parse(cls, value: str) -> "GroupScope":
        """Accept 'Global', 'universal', 'Domain Local', 'domain_local'..."""
        key = value.replace(" ", "").replace("_", "").lower()
        for scope in cls:
            if scope.value.lower() == key:
                return scope
        raise ValueError(f"Unknown group scope: {value!r}")


class Relation(str, Enum):
    """How a conflicting group relates to the group being converted."""
    PARENT_OF = "ParentOf"
    MEMBER_OF = "MemberOf"


@dataclass(frozen=True)
class DirectoryNode:
    """
    Immutable view of a directory object.

    `scope` is only meaningful for on-premises groups; Entra ID groups
    and users leave it as None.
    """
    id: str
    display_name: str
    kind: NodeKind
    principal_name: str = ""       # UPN for users, sAMAccountName for AD groups
    mail: str = ""
    scope: Optional[GroupScope] = None
    distinguished_name: str = ""

    @classmethod
    def user(cls, id: str, display_name: str, **kwargs) -> "DirectoryNode":
        return cls(id=id, display_name=display_name, kind=NodeKind.USER, **kwargs)

    @classmethod
    def group(cls, id: str, display_name: str, **kwargs) -> "DirectoryNode":
        return cls(id=id, display_name=display_name, kind=NodeKind.GROUP, **kwargs)

    @property
    def is_group(self) -> bool:
        return self.kind is NodeKind.GROUP


@dataclass(frozen=True)
class MembershipEdge:
    """Directed parent → member relation. Cycles are possible."""
    parent: DirectoryNode
    member: DirectoryNode


@dataclass(frozen=True)
class TraversalResult:
    """One member reached by the hierarchy walker."""
    node: DirectoryNode
    direct_parent: DirectoryNode
    hierarchy_path: tuple[str, ...] = field(default_factory=tuple)

    @property
    def depth(self) -> int:
        return len(self.hierarchy_path)

    def path_label(self, separator: str = " > ") -> str:
        return separator.join(self.hierarchy_path)


@dataclass(frozen=True)
class ScopeConflict:
    """A structural relationship the target scope does not allow."""
    subject_group: DirectoryNode
    conflicting_group: DirectoryNode
    relation: Relation
    reason: str

    def to_dict(self) -> dict:
        return {
            "subject_group": self.subject_group.display_name,
            "subject_group_id": self.subject_group.id,
            "conflicting_group": self.conflicting_group.display_name,
            "conflicting_group_id": self.conflicting_group.id,
            "conflicting_scope": (
                self.conflicting_group.scope.value
                if self.conflicting_group.scope else ""
            ),
            "relation": self.relation.value,
            "reason": self.reason,
        }

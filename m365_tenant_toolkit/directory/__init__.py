"""Directory package — typed models and the providers behind them."""

from .models import (
    DirectoryNode,
    GroupScope,
    MembershipEdge,
    NodeKind,
    Relation,
    ScopeConflict,
    TraversalResult,
)
from .provider import DirectoryProvider, IdentityNotFound, ProviderError
from .snapshot import SnapshotDirectory

__all__ = [
    "DirectoryNode",
    "GroupScope",
    "MembershipEdge",
    "NodeKind",
    "Relation",
    "ScopeConflict",
    "TraversalResult",
    "DirectoryProvider",
    "IdentityNotFound",
    "ProviderError",
    "SnapshotDirectory",
]

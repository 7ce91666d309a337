"""
Directory Provider — the contract every directory backend implements.
The walker, the conflict gate, and the tasks only talk to this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .models import DirectoryNode, GroupScope


class ProviderError(Exception):
    """A single directory call failed (permission, transient API error)."""
    pass


class IdentityNotFound(LookupError):
    """An identity could not be resolved in a directory."""
    def __init__(self, identity: str, provider: str = ""):
        self.identity = identity
        self.provider = provider
        where = f" in {provider}" if provider else ""
        super().__init__(f"'{identity}' not found{where}")


class DirectoryProvider(ABC):
    """
    Abstract directory backend.

    Lookups return None when the identity does not exist; any other
    failure is raised as ProviderError.
    """

    name: str = "directory"

    @abstractmethod
    async def get_group(self, identity: str) -> Optional[DirectoryNode]:
        """Resolve a group by id, name, or mail."""
        raise NotImplementedError

    @abstractmethod
    async def get_group_members(self, group_id: str) -> list[DirectoryNode]:
        """Return the direct members of a group, each tagged User or Group."""
        raise NotImplementedError

    @abstractmethod
    async def get_parent_groups(self, node_id: str) -> list[DirectoryNode]:
        """Return the groups that directly contain the node."""
        raise NotImplementedError

    @abstractmethod
    async def find_object(self, identity: str) -> Optional[DirectoryNode]:
        """Resolve a user first, then a group."""
        raise NotImplementedError

    async def set_group_scope(self, group_id: str, target: GroupScope) -> None:
        """Change a group's scope. Raises ProviderError on failure."""
        raise ProviderError(f"{self.name} does not support group scope changes")

    async def require_group(self, identity: str) -> DirectoryNode:
        group = await self.get_group(identity)
        if group is None:
            raise IdentityNotFound(identity, self.name)
        return group

    async def close(self) -> None:
        return None

"""
Entra ID provider — directory lookups over Microsoft Graph.
Entra groups carry no AD scope, so scope changes are not supported here.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import httpx

from ..graph.client import GraphAPIError, GraphClient, odata_quote
from .models import DirectoryNode, NodeKind
from .provider import DirectoryProvider, ProviderError

logger = logging.getLogger("m365_tenant_toolkit.directory.entra")

GUID_RE = re.compile(r"^[0-9a-fA-F]{8}-([0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}$")

ODATA_KINDS = {
    "#microsoft.graph.user": NodeKind.USER,
    "#microsoft.graph.group": NodeKind.GROUP,
}

GROUP_SELECT = "id,displayName,mail,mailNickname,onPremisesSamAccountName,securityEnabled,mailEnabled"
MEMBER_SELECT = "id,displayName,userPrincipalName,mail,mailNickname"


def to_node(item: dict, default_kind: Optional[NodeKind] = None) -> Optional[DirectoryNode]:
    """Map a Graph directoryObject to a DirectoryNode; None for other object types."""
    kind = ODATA_KINDS.get(item.get("@odata.type", ""), default_kind)
    if kind is None:
        return None
    if kind is NodeKind.USER:
        principal = item.get("userPrincipalName") or ""
    else:
        principal = item.get("onPremisesSamAccountName") or item.get("mailNickname") or ""
    return DirectoryNode(
        id=item["id"],
        display_name=item.get("displayName") or item["id"],
        kind=kind,
        principal_name=principal,
        mail=item.get("mail") or "",
    )


class EntraDirectory(DirectoryProvider):
    """DirectoryProvider backed by a GraphClient."""

    name = "Entra ID"

    def __init__(self, graph: GraphClient):
        self.graph = graph

    async def _get_single(self, endpoint: str, params: dict) -> Optional[dict]:
        try:
            data = await self.graph.get(endpoint, params=params)
        except GraphAPIError as e:
            raise ProviderError(str(e)) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{type(e).__name__} on {endpoint}: {e}") from e
        if data.get("_not_found"):
            return None
        if data.get("_forbidden"):
            raise ProviderError(f"Permission denied: {endpoint} — {data.get('_error_message', 'Forbidden')}")
        return data

    async def _get_list(self, endpoint: str, params: dict) -> list[dict]:
        try:
            return await self.graph.get_all_pages(endpoint, params=params)
        except GraphAPIError as e:
            raise ProviderError(str(e)) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{type(e).__name__} on {endpoint}: {e}") from e

    async def get_group(self, identity: str) -> Optional[DirectoryNode]:
        if GUID_RE.match(identity):
            data = await self._get_single(f"groups/{identity}", {"$select": GROUP_SELECT})
            return to_node(data, NodeKind.GROUP) if data else None

        q = odata_quote(identity)
        matches = await self._get_list("groups", {
            "$filter": f"displayName eq '{q}' or mail eq '{q}' or mailNickname eq '{q}'",
            "$select": GROUP_SELECT,
        })
        if len(matches) > 1:
            raise ProviderError(f"'{identity}' matches {len(matches)} groups; use the object id")
        return to_node(matches[0], NodeKind.GROUP) if matches else None

    async def get_group_members(self, group_id: str) -> list[DirectoryNode]:
        items = await self._get_list(f"groups/{group_id}/members", {"$select": MEMBER_SELECT})
        return self._nodes(items, f"members of {group_id}")

    async def get_parent_groups(self, node_id: str) -> list[DirectoryNode]:
        items = await self._get_list(f"directoryObjects/{node_id}/memberOf", {"$select": GROUP_SELECT})
        return [n for n in self._nodes(items, f"memberOf {node_id}") if n.is_group]

    async def find_object(self, identity: str) -> Optional[DirectoryNode]:
        user = await self._find_user(identity)
        if user is not None:
            return user
        return await self.get_group(identity)

    async def _find_user(self, identity: str) -> Optional[DirectoryNode]:
        if GUID_RE.match(identity) or "@" in identity:
            data = await self._get_single(f"users/{identity}", {"$select": MEMBER_SELECT})
            if data:
                return to_node(data, NodeKind.USER)
            if "@" not in identity:
                return None
            # Aliases and external mail addresses are not valid UPN keys
            q = odata_quote(identity)
            matches = await self._get_list("users", {
                "$filter": f"mail eq '{q}' or proxyAddresses/any(p:p eq 'smtp:{q}')",
                "$select": MEMBER_SELECT,
                "$count": "true",
            })
        else:
            q = odata_quote(identity)
            matches = await self._get_list("users", {
                "$filter": f"displayName eq '{q}' or mailNickname eq '{q}'",
                "$select": MEMBER_SELECT,
            })
        if len(matches) > 1:
            raise ProviderError(f"'{identity}' matches {len(matches)} users")
        return to_node(matches[0], NodeKind.USER) if matches else None

    @staticmethod
    def _nodes(items: list[dict], context: str) -> list[DirectoryNode]:
        nodes = []
        for item in items:
            node = to_node(item)
            if node is None:
                logger.debug(f"Skipping {item.get('@odata.type', 'unknown')} {item.get('id')} in {context}")
                continue
            nodes.append(node)
        return nodes

"""
Cross-environment existence comparison.
Looks every identity up in on-premises AD and in Entra ID and reports
where it exists.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..directory.models import DirectoryNode
from ..directory.provider import DirectoryProvider, ProviderError
from .base import BaseTask, TaskResult

logger = logging.getLogger("m365_tenant_toolkit.tasks.compare")


class ExistenceComparisonTask(BaseTask):
    name = "compare"
    description = "Existence comparison: Active Directory vs Entra ID"
    columns = [
        "Identity", "InActiveDirectory", "InEntraID", "ADDisplayName",
        "EntraDisplayName", "ADObjectType", "EntraObjectType", "Status", "Detail",
    ]

    def __init__(self, ad: DirectoryProvider, entra: DirectoryProvider, identities: list[str]):
        self.ad = ad
        self.entra = entra
        self.identities = identities

    async def run(self, result: TaskResult):
        for identity in self.identities:
            result.metadata["items_processed"] += 1
            errors = []
            ad_node = await self._lookup(self.ad, identity, errors)
            entra_node = await self._lookup(self.entra, identity, errors)

            if errors:
                status = "Error"
                for err in errors:
                    result.add_error(err)
            elif ad_node and entra_node:
                status = "Both"
            elif ad_node:
                status = "ADOnly"
            elif entra_node:
                status = "EntraOnly"
            else:
                status = "NotFound"

            result.add_row({
                "Identity": identity,
                "InActiveDirectory": ad_node is not None,
                "InEntraID": entra_node is not None,
                "ADDisplayName": ad_node.display_name if ad_node else "",
                "EntraDisplayName": entra_node.display_name if entra_node else "",
                "ADObjectType": ad_node.kind.value if ad_node else "",
                "EntraObjectType": entra_node.kind.value if entra_node else "",
                "Status": status,
                "Detail": "; ".join(errors),
            })

    @staticmethod
    async def _lookup(provider: DirectoryProvider, identity: str, errors: list[str]) -> Optional[DirectoryNode]:
        try:
            return await provider.find_object(identity)
        except ProviderError as e:
            errors.append(f"{provider.name} lookup of '{identity}' failed: {e}")
            return None

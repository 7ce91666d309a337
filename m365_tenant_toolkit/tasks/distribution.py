"""
Distribution Group Enablement
Stamps mail attributes on on-premises groups so directory sync publishes
them as mail-enabled groups.
"""

from __future__ import annotations

import logging

from ..directory.active_directory import ActiveDirectory
from ..directory.provider import ProviderError
from .base import BaseTask, TaskResult

logger = logging.getLogger("m365_tenant_toolkit.tasks.distribution")


class DistributionGroupEnableTask(BaseTask):
    name = "enable-dl"
    description = "Bulk distribution group mail enablement"
    columns = ["Identity", "Group", "Alias", "PrimarySmtpAddress", "Status", "Detail"]

    def __init__(
        self,
        ad: ActiveDirectory,
        rows: list[dict],
        identity_column: str,
        mail_domain: str = "",
        commit: bool = False,
    ):
        self.ad = ad
        self.rows = rows
        self.identity_column = identity_column
        self.mail_domain = mail_domain.lstrip("@")
        self.commit = commit

    async def run(self, result: TaskResult):
        for source in self.rows:
            identity = source.get(self.identity_column, "")
            if not identity:
                continue
            result.metadata["items_processed"] += 1
            row = {"Identity": identity, "Group": "", "Alias": "", "PrimarySmtpAddress": "",
                   "Status": "", "Detail": ""}

            try:
                group = await self.ad.get_group(identity)
            except ProviderError as e:
                result.add_error(f"Lookup of '{identity}' failed: {e}")
                row.update(Status="Failed", Detail=str(e))
                result.add_row(row)
                continue
            if group is None:
                row.update(Status="NotFound", Detail="Group not found in Active Directory")
                result.add_row(row)
                continue

            row["Group"] = group.display_name
            if group.mail:
                row.update(PrimarySmtpAddress=group.mail, Status="AlreadyEnabled")
                result.add_row(row)
                continue

            alias = source.get("Alias") or group.principal_name or group.display_name.replace(" ", "")
            address = source.get("PrimarySmtpAddress") or (
                f"{alias}@{self.mail_domain}" if self.mail_domain else ""
            )
            row.update(Alias=alias, PrimarySmtpAddress=address)
            if not address:
                row.update(Status="Failed", Detail="No PrimarySmtpAddress and no --mail-domain")
                result.add_row(row)
                continue

            if not self.commit:
                row.update(Status="WhatIf", Detail="Would stamp mail, mailNickname, proxyAddresses")
                result.add_row(row)
                continue

            try:
                await self.ad.set_mail_attributes(group.id, address, alias)
            except ProviderError as e:
                result.add_error(f"Enabling '{group.display_name}' failed: {e}")
                row.update(Status="Failed", Detail=str(e))
            else:
                row["Status"] = "Enabled"
            result.add_row(row)

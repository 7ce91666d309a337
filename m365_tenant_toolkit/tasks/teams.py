"""
Teams Provisioning
Creates Microsoft Teams from CSV rows (TeamName, Description, Owner, Visibility).
"""

from __future__ import annotations

import logging

from ..config import GRAPH_API_VERSION, GRAPH_BASE_URL
from ..graph.client import GraphAPIError, GraphClient, odata_quote
from .base import BaseTask, TaskResult

logger = logging.getLogger("m365_tenant_toolkit.tasks.teams")

VISIBILITIES = {"private": "private", "public": "public"}


def build_team_body(name: str, description: str, owner: str, visibility: str) -> dict:
    """Request body for POST /teams with the standard template and one owner."""
    base = f"{GRAPH_BASE_URL}/{GRAPH_API_VERSION}"
    return {
        "template@odata.bind": f"{base}/teamsTemplates('standard')",
        "displayName": name,
        "description": description or name,
        "visibility": visibility,
        "members": [
            {
                "@odata.type": "#microsoft.graph.aadUserConversationMember",
                "roles": ["owner"],
                "user@odata.bind": f"{base}/users('{owner}')",
            }
        ],
    }


class TeamsProvisioningTask(BaseTask):
    name = "teams"
    description = "Microsoft Teams provisioning"
    columns = ["TeamName", "Owner", "Visibility", "Status", "Detail"]

    def __init__(self, graph: GraphClient, rows: list[dict], commit: bool = False):
        self.graph = graph
        self.rows = rows
        self.commit = commit

    async def run(self, result: TaskResult):
        for source in self.rows:
            name = source.get("TeamName") or source.get("DisplayName") or ""
            if not name:
                continue
            result.metadata["items_processed"] += 1
            owner = source.get("Owner", "")
            visibility = VISIBILITIES.get(source.get("Visibility", "").lower(), "private")
            row = {"TeamName": name, "Owner": owner, "Visibility": visibility, "Status": "", "Detail": ""}

            if not owner:
                row.update(Status="Failed", Detail="Owner is required")
                result.add_row(row)
                continue

            try:
                existing = await self.graph.get_all_pages("groups", params={
                    "$filter": f"displayName eq '{odata_quote(name)}'",
                    "$select": "id,displayName,resourceProvisioningOptions",
                })
            except GraphAPIError as e:
                result.add_error(f"Lookup of team '{name}' failed: {e}")
                row.update(Status="Failed", Detail=str(e))
                result.add_row(row)
                continue

            if existing:
                has_team = any("Team" in (g.get("resourceProvisioningOptions") or []) for g in existing)
                row.update(
                    Status="Exists",
                    Detail="Team already exists" if has_team else "A group with this name exists without a team",
                )
                result.add_row(row)
                continue

            if not self.commit:
                row.update(Status="WhatIf", Detail="Would create team")
                result.add_row(row)
                continue

            body = build_team_body(name, source.get("Description", ""), owner, visibility)
            try:
                response = await self.graph.post("teams", body)
            except GraphAPIError as e:
                result.add_error(f"Creating team '{name}' failed: {e}")
                row.update(Status="Failed", Detail=str(e))
            else:
                row.update(Status="Created", Detail=response.get("_location", ""))
                logger.info(f"Team '{name}' provisioning accepted")
            result.add_row(row)

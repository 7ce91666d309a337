"""
SAML Certificate Expiry Report
One row per token-signing certificate of every SAML enterprise application.
"""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Optional

from ..graph.client import GraphClient
from .base import BaseTask, TaskResult

logger = logging.getLogger("m365_tenant_toolkit.tasks.saml_certs")


def thumbprint_from_key_identifier(value: Optional[str]) -> str:
    """customKeyIdentifier carries the certificate thumbprint, base64 encoded."""
    if not value:
        return ""
    try:
        return base64.b64decode(value).hex().upper()
    except (binascii.Error, ValueError):
        return value.upper()


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class SamlCertificateTask(BaseTask):
    name = "saml-certs"
    description = "SAML signing certificate expiry report"
    columns = [
        "AppName", "AppId", "KeyId", "Thumbprint", "ActiveSigningKey",
        "StartDate", "EndDate", "DaysRemaining", "Status",
    ]

    def __init__(self, graph: GraphClient, warning_days: int = 30, now: Optional[datetime] = None):
        self.graph = graph
        self.warning_days = warning_days
        self.now = now or datetime.now(timezone.utc)

    async def run(self, result: TaskResult):
        apps = await self.graph.get_all_pages("servicePrincipals", params={
            "$filter": "preferredSingleSignOnMode eq 'saml'",
            "$select": "id,appId,displayName,keyCredentials,preferredTokenSigningKeyThumbprint",
        })
        logger.info(f"Found {len(apps)} SAML applications")

        for app in apps:
            result.metadata["items_processed"] += 1
            active = (app.get("preferredTokenSigningKeyThumbprint") or "").upper()
            signing_keys = [k for k in app.get("keyCredentials", []) if k.get("usage") != "Verify"]
            if not signing_keys:
                result.add_warning(f"{app.get('displayName')} has no signing certificate")
                continue

            for key in signing_keys:
                thumbprint = thumbprint_from_key_identifier(key.get("customKeyIdentifier"))
                end = parse_graph_datetime(key.get("endDateTime"))
                days = (end - self.now).days if end else ""
                if end is None:
                    status = "Unknown"
                elif end < self.now:
                    status = "Expired"
                elif days <= self.warning_days:
                    status = "Expiring"
                else:
                    status = "Valid"
                result.add_row({
                    "AppName": app.get("displayName", ""),
                    "AppId": app.get("appId", ""),
                    "KeyId": key.get("keyId", ""),
                    "Thumbprint": thumbprint,
                    "ActiveSigningKey": bool(active) and thumbprint == active,
                    "StartDate": key.get("startDateTime", ""),
                    "EndDate": key.get("endDateTime", ""),
                    "DaysRemaining": days,
                    "Status": status,
                })

"""
Tests for the tools (tasks) end to end against in-memory directories and a
mocked Graph endpoint.

Covers:
- members: report rows, NotFound roots, Partial status
- compare: Both / ADOnly / EntraOnly / NotFound / Error
- convert-scope: rows and metadata from the Conflict Gate
- enable-dl: what-if, commit, already enabled
- teams, sharepoint-sites, saml-certs over httpx.MockTransport
"""
import asyncio
import base64
from datetime import datetime, timezone

import httpx
import pytest

from m365_tenant_toolkit.directory.models import DirectoryNode, GroupScope
from m365_tenant_toolkit.directory.provider import ProviderError
from m365_tenant_toolkit.directory.snapshot import SnapshotDirectory
from m365_tenant_toolkit.graph.client import GraphClient
from m365_tenant_toolkit.safety.guardian import SafetyGuardian
from m365_tenant_toolkit.scope.gate import Resolution
from m365_tenant_toolkit.tasks import (
    DistributionGroupEnableTask,
    ExistenceComparisonTask,
    GroupMembershipTask,
    SamlCertificateTask,
    ScopeConversionTask,
    SharePointSiteReportTask,
    TeamsProvisioningTask,
)
from m365_tenant_toolkit.tasks.saml_certs import thumbprint_from_key_identifier
from m365_tenant_toolkit.tasks.teams import build_team_body


def execute(task):
    return asyncio.run(task.execute())


def execute_with_graph(handler, make_task, allow_writes=False):
    async def _run():
        guardian = SafetyGuardian(allow_writes=allow_writes)
        async with GraphClient("token", guardian, transport=httpx.MockTransport(handler)) as graph:
            return await make_task(graph).execute()
    return asyncio.run(_run())


# =============================================================================
# members
# =============================================================================

class TestMembersTask:
    def test_rows(self, nested_directory):
        result = execute(GroupMembershipTask(nested_directory, ["Sales-All"]))
        assert [r["MemberName"] for r in result.rows] == ["Alice", "Bob", "Carol"]
        bob = result.rows[1]
        assert bob["RootGroup"] == "Sales-All"
        assert bob["DirectParent"] == "Sales-East"
        assert bob["HierarchyPath"] == "Sales-All > Sales-East"
        assert bob["Depth"] == 2
        assert bob["MemberType"] == "User"
        assert bob["PrincipalName"] == "bob@contoso.com"
        assert bob["Status"] == "OK"
        assert result.metadata["groups_expanded"] == 3
        assert len(result.metadata["warnings"]) == 1

    def test_unknown_group_continues(self, nested_directory):
        result = execute(GroupMembershipTask(nested_directory, ["Ghost", "Sales-East"]))
        assert result.rows[0]["RootGroup"] == "Ghost"
        assert result.rows[0]["Status"] == "NotFound"
        assert [r["MemberName"] for r in result.rows[1:]] == ["Bob", "Carol"]
        assert result.metadata["status_counts"] == {"NotFound": 1, "OK": 2}

    def test_each_root_deduplicated_separately(self, nested_directory):
        result = execute(GroupMembershipTask(nested_directory, ["Sales-East", "Sales-West"]))
        carol_roots = [r["RootGroup"] for r in result.rows if r["MemberName"] == "Carol"]
        assert carol_roots == ["Sales-East", "Sales-West"]

    def test_partial_when_a_branch_fails(self, nested_directory):
        class Flaky(SnapshotDirectory):
            async def get_group_members(self, group_id):
                if group_id == "sales-west":
                    raise ProviderError("timeout")
                return await super().get_group_members(group_id)

        flaky = Flaky(nested_directory._nodes.values(), nested_directory._edges)
        result = execute(GroupMembershipTask(flaky, ["Sales-All"]))
        assert {r["Status"] for r in result.rows} == {"Partial"}
        assert result.metadata["errors"]

    def test_empty_group(self):
        provider = SnapshotDirectory([DirectoryNode.group("g", "Empty")])
        result = execute(GroupMembershipTask(provider, ["Empty"]))
        assert result.rows[0]["Status"] == "Empty"

    def test_unreadable_root_is_error_not_empty(self, nested_directory):
        class Forbidden(SnapshotDirectory):
            async def get_group_members(self, group_id):
                raise ProviderError("403 Forbidden")

        forbidden = Forbidden(nested_directory._nodes.values(), nested_directory._edges)
        result = execute(GroupMembershipTask(forbidden, ["Sales-All"]))
        assert len(result.rows) == 1
        assert result.rows[0]["RootGroup"] == "Sales-All"
        assert result.rows[0]["Status"] == "Error"
        assert result.metadata["errors"] == ["Failed to read members of 'Sales-All': 403 Forbidden"]


# =============================================================================
# compare
# =============================================================================

class TestCompareTask:
    def test_statuses(self):
        ad = SnapshotDirectory([
            DirectoryNode.user("CN=Alice,DC=corp", "Alice", principal_name="alice@contoso.com"),
            DirectoryNode.user("CN=Bob,DC=corp", "Bob", principal_name="bob@contoso.com"),
        ])
        entra = SnapshotDirectory([
            DirectoryNode.user("a1", "Alice", principal_name="alice@contoso.com"),
            DirectoryNode.group("g1", "Cloud Only"),
        ])
        result = execute(ExistenceComparisonTask(
            ad, entra, ["alice@contoso.com", "bob@contoso.com", "Cloud Only", "nobody"],
        ))
        assert [r["Status"] for r in result.rows] == ["Both", "ADOnly", "EntraOnly", "NotFound"]
        assert result.rows[0]["InActiveDirectory"] is True
        assert result.rows[2]["EntraObjectType"] == "Group"

    def test_provider_error_row(self):
        class Broken(SnapshotDirectory):
            name = "Active Directory"

            async def find_object(self, identity):
                raise ProviderError("server down")

        entra = SnapshotDirectory([DirectoryNode.user("a1", "Alice")])
        result = execute(ExistenceComparisonTask(Broken([]), entra, ["Alice", "Bob"]))
        assert [r["Status"] for r in result.rows] == ["Error", "Error"]
        assert "server down" in result.rows[0]["Detail"]
        assert len(result.metadata["errors"]) == 2


# =============================================================================
# convert-scope
# =============================================================================

class TestScopeConversionTask:
    def test_rows_and_metadata(self, scoped_directory):
        task = ScopeConversionTask(
            scoped_directory,
            ["GG-Child", "GG-Free", "GG-Target", "Missing"],
            GroupScope.UNIVERSAL,
            decide=lambda conflicts: Resolution.SKIP_CONFLICTING,
            commit=True,
        )
        result = execute(task)
        by_group = {r["Group"]: r for r in result.rows}
        assert by_group["Missing"]["Status"] == "NotFound"
        assert by_group["GG-Child"]["Status"] == "Skipped"
        assert by_group["GG-Free"]["Status"] == "Converted"
        assert by_group["GG-Free"]["ScopeAfter"] == "Universal"
        assert by_group["GG-Target"]["Status"] == "Converted"
        assert result.metadata["resolution"] == "SkipConflicting"
        assert len(result.metadata["conflicts"]) == 2
        assert not task.outcome.aborted

    def test_what_if_by_default(self, scoped_directory):
        task = ScopeConversionTask(
            scoped_directory, ["GG-Free"], GroupScope.DOMAIN_LOCAL,
            decide=lambda conflicts: Resolution.ABORT,
        )
        result = execute(task)
        assert result.rows[0]["Status"] == "Skipped"
        assert result.rows[0]["Detail"].startswith("WhatIf")
        assert scoped_directory.scope_changes == []

    def test_duplicate_identities_collapse(self, scoped_directory):
        task = ScopeConversionTask(
            scoped_directory, ["GG-Free", "gg-free"], GroupScope.UNIVERSAL,
            decide=lambda conflicts: Resolution.ABORT, commit=True,
        )
        result = execute(task)
        assert len(result.rows) == 1
        assert scoped_directory.scope_changes == [("gg-free", GroupScope.UNIVERSAL)]


# =============================================================================
# enable-dl
# =============================================================================

class MailDirectory(SnapshotDirectory):
    """Snapshot that records mail enablement instead of writing LDAP."""

    def __init__(self, nodes, edges=()):
        super().__init__(nodes, edges)
        self.enabled = []

    async def set_mail_attributes(self, group_id, mail, alias):
        self.enabled.append((group_id, mail, alias))


@pytest.fixture
def mail_directory():
    return MailDirectory([
        DirectoryNode.group("CN=Sales,DC=corp", "Sales", principal_name="Sales"),
        DirectoryNode.group("CN=HR,DC=corp", "HR", principal_name="HR", mail="hr@contoso.com"),
    ])


class TestDistributionTask:
    ROWS = [
        {"GroupName": "Sales", "Alias": "", "PrimarySmtpAddress": ""},
        {"GroupName": "HR", "Alias": "", "PrimarySmtpAddress": ""},
        {"GroupName": "Ghost", "Alias": "", "PrimarySmtpAddress": ""},
    ]

    def test_what_if(self, mail_directory):
        result = execute(DistributionGroupEnableTask(
            mail_directory, self.ROWS, "GroupName", mail_domain="@contoso.com",
        ))
        assert [r["Status"] for r in result.rows] == ["WhatIf", "AlreadyEnabled", "NotFound"]
        assert result.rows[0]["PrimarySmtpAddress"] == "Sales@contoso.com"
        assert mail_directory.enabled == []

    def test_commit_uses_csv_address(self, mail_directory):
        rows = [{"GroupName": "Sales", "Alias": "sales-team", "PrimarySmtpAddress": "sales@contoso.com"}]
        result = execute(DistributionGroupEnableTask(mail_directory, rows, "GroupName", commit=True))
        assert result.rows[0]["Status"] == "Enabled"
        assert mail_directory.enabled == [("CN=Sales,DC=corp", "sales@contoso.com", "sales-team")]

    def test_no_address_available(self, mail_directory):
        rows = [{"GroupName": "Sales"}]
        result = execute(DistributionGroupEnableTask(mail_directory, rows, "GroupName", commit=True))
        assert result.rows[0]["Status"] == "Failed"
        assert mail_directory.enabled == []


# =============================================================================
# teams
# =============================================================================

class TestTeamsTask:
    ROWS = [
        {"TeamName": "Project Apollo", "Description": "", "Owner": "alice@contoso.com", "Visibility": "Public"},
        {"TeamName": "Finance", "Description": "", "Owner": "bob@contoso.com", "Visibility": ""},
        {"TeamName": "No Owner", "Description": "", "Owner": "", "Visibility": ""},
    ]

    @staticmethod
    def handler(posted):
        def _handler(request):
            if request.method == "POST":
                posted.append(request)
                return httpx.Response(202, headers={"Location": "/teams('t1')/operations('o1')"})
            if "'Finance'" in request.url.params.get("$filter", ""):
                return httpx.Response(200, json={"value": [
                    {"id": "g1", "displayName": "Finance", "resourceProvisioningOptions": ["Team"]},
                ]})
            return httpx.Response(200, json={"value": []})
        return _handler

    def test_what_if(self):
        posted = []
        result = execute_with_graph(self.handler(posted), lambda g: TeamsProvisioningTask(g, self.ROWS))
        assert [r["Status"] for r in result.rows] == ["WhatIf", "Exists", "Failed"]
        assert result.rows[0]["Visibility"] == "public"
        assert posted == []

    def test_commit_creates_team(self):
        posted = []
        result = execute_with_graph(
            self.handler(posted), lambda g: TeamsProvisioningTask(g, self.ROWS[:1], commit=True), allow_writes=True,
        )
        assert result.rows[0]["Status"] == "Created"
        assert len(posted) == 1
        assert posted[0].url.path == "/v1.0/teams"

    def test_team_body(self):
        body = build_team_body("Apollo", "", "alice@contoso.com", "private")
        assert body["description"] == "Apollo"
        assert body["members"][0]["roles"] == ["owner"]
        assert body["members"][0]["user@odata.bind"].endswith("/users('alice@contoso.com')")


# =============================================================================
# sharepoint-sites
# =============================================================================

class TestSharePointTask:
    def test_quota_and_missing_drive(self):
        gb = 1024 ** 3

        def handler(request):
            path = request.url.path
            if path == "/v1.0/sites":
                assert "$top" not in request.url.params
                return httpx.Response(200, json={"value": [
                    {"id": "s1", "displayName": "Intranet", "webUrl": "https://contoso.sharepoint.com/sites/intranet"},
                    {"id": "s2", "displayName": "Archive", "webUrl": "https://contoso.sharepoint.com/sites/archive"},
                ]})
            if path == "/v1.0/sites/s1/drive":
                return httpx.Response(200, json={"id": "d1", "quota": {"used": 5 * gb, "total": 1024 * gb}})
            return httpx.Response(404)

        result = execute_with_graph(handler, SharePointSiteReportTask)
        assert result.rows[0]["StorageUsedGB"] == 5.0
        assert result.rows[0]["StorageQuotaGB"] == 1024.0
        assert result.rows[0]["Status"] == "OK"
        assert result.rows[1]["Status"] == "NoDrive"


# =============================================================================
# saml-certs
# =============================================================================

class TestSamlTask:
    NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)

    @staticmethod
    def key(key_id, thumbprint, end, usage="Sign"):
        return {
            "keyId": key_id,
            "usage": usage,
            "customKeyIdentifier": base64.b64encode(bytes.fromhex(thumbprint)).decode(),
            "startDateTime": "2024-06-01T00:00:00Z",
            "endDateTime": end,
        }

    def test_statuses(self):
        apps = [
            {
                "id": "sp1", "appId": "app1", "displayName": "Salesforce",
                "preferredTokenSigningKeyThumbprint": "a1b2c3",
                "keyCredentials": [
                    self.key("k1", "A1B2C3", "2026-06-15T00:00:00Z"),
                    self.key("k1v", "A1B2C3", "2026-06-15T00:00:00Z", usage="Verify"),
                    self.key("k2", "D4E5F6", "2028-01-01T00:00:00Z"),
                ],
            },
            {
                "id": "sp2", "appId": "app2", "displayName": "Legacy HR",
                "keyCredentials": [self.key("k3", "0F0F0F", "2026-01-01T00:00:00Z")],
            },
        ]

        def handler(request):
            assert "preferredSingleSignOnMode eq 'saml'" in request.url.params["$filter"]
            return httpx.Response(200, json={"value": apps})

        result = execute_with_graph(handler, lambda g: SamlCertificateTask(g, warning_days=30, now=self.NOW))
        rows = {r["KeyId"]: r for r in result.rows}
        assert set(rows) == {"k1", "k2", "k3"}
        assert rows["k1"]["Status"] == "Expiring"
        assert rows["k1"]["DaysRemaining"] == 14
        assert rows["k1"]["ActiveSigningKey"] is True
        assert rows["k2"]["Status"] == "Valid"
        assert rows["k2"]["ActiveSigningKey"] is False
        assert rows["k3"]["Status"] == "Expired"
        assert rows["k3"]["Thumbprint"] == "0F0F0F"

    def test_thumbprint_fallback(self):
        assert thumbprint_from_key_identifier("not base64!") == "NOT BASE64!"
        assert thumbprint_from_key_identifier(None) == ""

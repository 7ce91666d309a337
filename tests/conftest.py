"""
Shared fixtures: small in-memory directories shaped like real tenants.
"""
import json

import pytest

from m365_tenant_toolkit.directory.models import DirectoryNode, GroupScope
from m365_tenant_toolkit.directory.snapshot import SnapshotDirectory


def user(uid, name=None, **kwargs):
    return DirectoryNode.user(uid, name or uid.title(), principal_name=f"{uid}@contoso.com", **kwargs)


def group(gid, name=None, scope=None, **kwargs):
    return DirectoryNode.group(gid, name or gid, scope=scope, **kwargs)


# =============================================================================
# Directories
# =============================================================================

@pytest.fixture
def nested_directory():
    """
    Sales-All
      ├── alice
      ├── Sales-East
      │     ├── bob
      │     └── carol
      └── Sales-West
            ├── carol
            └── Sales-East   (reached a second time)
    """
    nodes = [
        group("sales-all", "Sales-All"),
        group("sales-east", "Sales-East"),
        group("sales-west", "Sales-West"),
        user("alice"), user("bob"), user("carol"),
    ]
    edges = [
        ("sales-all", "alice"),
        ("sales-all", "sales-east"),
        ("sales-all", "sales-west"),
        ("sales-east", "bob"),
        ("sales-east", "carol"),
        ("sales-west", "carol"),
        ("sales-west", "sales-east"),
    ]
    return SnapshotDirectory(nodes, edges)


@pytest.fixture
def cyclic_directory():
    """A contains B, B contains C, C contains A; each group has one user."""
    nodes = [
        group("A"), group("B"), group("C"),
        user("ua"), user("ub"), user("uc"),
    ]
    edges = [
        ("A", "ua"), ("A", "B"),
        ("B", "ub"), ("B", "C"),
        ("C", "uc"), ("C", "A"),
    ]
    return SnapshotDirectory(nodes, edges)


@pytest.fixture
def scoped_directory():
    """
    On-premises groups with scopes:

      GG-Parent (Global)       contains  GG-Child (Global)
      DL-Files  (DomainLocal)  contains  GG-Child
      UG-Mail   (Universal)    is a member of GG-Target (Global)
    """
    nodes = [
        group("gg-parent", "GG-Parent", GroupScope.GLOBAL),
        group("gg-child", "GG-Child", GroupScope.GLOBAL),
        group("dl-files", "DL-Files", GroupScope.DOMAIN_LOCAL),
        group("ug-mail", "UG-Mail", GroupScope.UNIVERSAL),
        group("gg-target", "GG-Target", GroupScope.GLOBAL),
        group("gg-free", "GG-Free", GroupScope.GLOBAL),
        user("dave"),
    ]
    edges = [
        ("gg-parent", "gg-child"),
        ("dl-files", "gg-child"),
        ("gg-target", "ug-mail"),
        ("gg-child", "dave"),
        ("gg-free", "dave"),
    ]
    return SnapshotDirectory(nodes, edges)


@pytest.fixture
def snapshot_file(tmp_path):
    """Write a snapshot JSON and return its path."""
    def _write(data, name="snapshot.json"):
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def csv_file(tmp_path):
    """Write CSV text and return its path."""
    def _write(text, name="input.csv"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write

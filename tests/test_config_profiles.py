"""
Tests for configuration, profiles, authentication helpers and logging setup.

Covers:
- ToolkitConfig.from_file and LDAPConfig defaults
- ProfileStore persistence and CRUD
- Bind password resolution from the environment
- setup_logging file handler
"""
import json
import logging

import pytest

from m365_tenant_toolkit.auth.authenticator import (
    AuthenticationError,
    Authenticator,
    load_pfx_credential,
    resolve_bind_password,
)
from m365_tenant_toolkit.config import LDAPConfig, OutputConfig, ToolkitConfig
from m365_tenant_toolkit.errors import SetupError
from m365_tenant_toolkit.logging_config import setup_logging
from m365_tenant_toolkit.profiles import ProfileStore, TenantProfile, resolve_profile


class TestConfig:
    def test_ldap_defaults(self):
        assert LDAPConfig(server="dc01").port == 389
        ssl = LDAPConfig(server="dc01", domain="corp.contoso.com", use_ssl=True)
        assert ssl.port == 636
        assert ssl.base_dn == "DC=corp,DC=contoso,DC=com"

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "auth": {"certificate": {"tenant_id": "t", "client_id": "c", "certificate_path": "cert.txt"}},
            "ldap": {"server": "dc01", "domain": "corp.local", "page_size": 500, "unknown": 1},
            "report": {"max_depth": 10, "mail_domain": "contoso.com"},
            "log_level": "DEBUG",
        }))
        config = ToolkitConfig.from_file(path)
        assert config.auth.certificate.certificate_path == "cert.txt"
        assert config.ldap.base_dn == "DC=corp,DC=local"
        assert config.ldap.page_size == 500
        assert config.report.max_depth == 10
        assert config.report.deduplicate_members is True
        assert config.log_level == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(SetupError, match="not found"):
            ToolkitConfig.from_file(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(SetupError, match="not valid JSON"):
            ToolkitConfig.from_file(path)

    def test_output_directories(self, tmp_path):
        output = OutputConfig(base_dir=str(tmp_path), timestamp="20260101T000000Z")
        output.create_directories()
        assert output.run_dir == tmp_path / "run_20260101T000000Z"
        assert output.log_dir.is_dir()


class TestProfiles:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "profiles.json"
        store = ProfileStore.load(path)
        store.add(TenantProfile(
            name="contoso", tenant_id="t1", client_id="c1",
            ldap_server="dc01.corp.contoso.com", ad_domain="corp.contoso.com", bind_user="CORP\\svc-toolkit",
        ))
        store.add(TenantProfile(name="fabrikam", tenant_id="t2", client_id="c2"))

        reloaded = ProfileStore.load(path)
        assert reloaded.default_profile == "contoso"
        assert reloaded.get("CONTOSO").bind_user == "CORP\\svc-toolkit"
        assert [p.name for p in reloaded.list_profiles()] == ["contoso", "fabrikam"]
        assert resolve_profile(path=path).name == "contoso"
        assert resolve_profile("fabrikam", path=path).tenant_id == "t2"

    def test_remove_default_moves_default(self, tmp_path):
        path = tmp_path / "profiles.json"
        store = ProfileStore.load(path)
        store.add(TenantProfile(name="a", tenant_id="t", client_id="c"))
        store.add(TenantProfile(name="b", tenant_id="t", client_id="c"))
        assert store.remove("a")
        assert not store.remove("a")
        assert ProfileStore.load(path).default_profile == "b"

    def test_set_default(self, tmp_path):
        path = tmp_path / "profiles.json"
        store = ProfileStore.load(path)
        store.add(TenantProfile(name="a", tenant_id="t", client_id="c"))
        store.add(TenantProfile(name="b", tenant_id="t", client_id="c"))
        assert store.set_default("b")
        assert not store.set_default("zzz")
        assert ProfileStore.load(path).get_default().name == "b"

    def test_corrupt_file_gives_empty_store(self, tmp_path):
        path = tmp_path / "profiles.json"
        path.write_text("{")
        assert ProfileStore.load(path).profiles == {}


class TestAuthHelpers:
    def test_bind_password_from_environment(self, monkeypatch):
        monkeypatch.setenv("AD_BIND_PASSWORD", "s3cret")
        ldap = LDAPConfig(server="dc01", bind_user="CORP\\svc")
        assert resolve_bind_password(ldap) == "s3cret"
        assert ldap.bind_password == "s3cret"

    def test_anonymous_bind_needs_no_password(self, monkeypatch):
        monkeypatch.delenv("AD_BIND_PASSWORD", raising=False)
        assert resolve_bind_password(LDAPConfig(server="dc01")) == ""

    def test_missing_certificate(self, tmp_path):
        with pytest.raises(AuthenticationError, match="Certificate file not found"):
            load_pfx_credential(str(tmp_path / "base64.txt"), "pw")

    def test_authentication_error_is_setup_error(self):
        assert issubclass(AuthenticationError, SetupError)

    def test_permissions_per_tool(self):
        assert "Team.Create" in Authenticator.list_required_permissions("teams")
        assert Authenticator.list_required_permissions("convert-scope") == {}


class TestLogging:
    def test_log_file_created(self, tmp_path):
        log_file = setup_logging("WARNING", tmp_path / "logs")
        logging.getLogger("m365_tenant_toolkit.test").debug("written to file only")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert log_file.name.startswith("toolkit_")
        assert "written to file only" in log_file.read_text(encoding="utf-8")
        setup_logging("WARNING")

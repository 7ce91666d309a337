"""
Configuration module for the M365 Tenant Toolkit.
Defines tunable parameters, API endpoints, directory connection settings,
and output locations.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import SetupError


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty
    thumbprint: str = ""

@dataclass
class DelegatedAuth:
    """Delegated (interactive) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "https://graph.microsoft.com/.default"
    ])

@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "certificate"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── On-premises Active Directory ───────────────────────────────────────────

@dataclass
class LDAPConfig:
    """Connection settings for the on-premises domain controller."""
    server: str = ""
    domain: str = ""               # e.g. corp.contoso.com
    base_dn: str = ""              # Derived from domain when empty
    bind_user: str = ""            # DOMAIN\\user or user@domain
    bind_password: str = ""        # Prompted / AD_BIND_PASSWORD if empty
    use_ssl: bool = False
    port: Optional[int] = None
    page_size: int = 1000
    timeout: int = 30

    def __post_init__(self):
        if self.port is None:
            self.port = 636 if self.use_ssl else 389
        if not self.base_dn and self.domain:
            self.base_dn = ",".join(f"DC={part}" for part in self.domain.split("."))


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"

# Directory calls are issued one at a time
MAX_CONCURRENT_REQUESTS = 1
MAX_RETRIES = 5                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 10000    # Safety cap on pagination loops


# ─── Report Settings ────────────────────────────────────────────────────────

@dataclass
class ReportConfig:
    """Controls for the individual tools."""
    deduplicate_members: bool = True      # One row per member per root group
    include_nested_groups: bool = False   # Emit rows for nested groups too
    max_depth: int = 100                  # Nesting levels expanded before giving up
    expiry_warning_days: int = 30         # SAML certs expiring within N days
    mail_domain: str = ""                 # Default SMTP domain for enable-dl


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory settings. Each run gets its own directory."""
    base_dir: str = ""
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), "m365_toolkit_output")

    @property
    def run_dir(self) -> Path:
        return Path(self.base_dir) / f"run_{self.timestamp}"

    @property
    def log_dir(self) -> Path:
        return self.run_dir / "logs"

    def create_directories(self):
        for d in [self.run_dir, self.log_dir]:
            d.mkdir(parents=True, exist_ok=True)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class ToolkitConfig:
    """Top-level configuration for every tool."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    ldap: LDAPConfig = field(default_factory=LDAPConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    log_level: str = "INFO"

    @classmethod
    def from_file(cls, path: str | Path) -> "ToolkitConfig":
        """Load configuration from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise SetupError(f"Config file not found: {path}")
        except json.JSONDecodeError as e:
            raise SetupError(f"Config file {path} is not valid JSON: {e}")

        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                    thumbprint=c.get("thumbprint", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        if "ldap" in data:
            known = {k: v for k, v in data["ldap"].items() if hasattr(config.ldap, k)}
            config.ldap = LDAPConfig(**known)
        if "report" in data:
            for k, v in data["report"].items():
                if hasattr(config.report, k):
                    setattr(config.report, k, v)
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.log_level = data.get("log_level", "INFO")
        return config


# ─── Required Graph API Permissions (per tool) ──────────────────────────────

REQUIRED_PERMISSIONS = {
    "members": {
        "Group.Read.All": "Resolve groups by id or display name",
        "GroupMember.Read.All": "Enumerate direct and nested group members",
        "User.Read.All": "Read member user principal names and mail",
    },
    "compare": {
        "User.Read.All": "Look up users by UPN or mail",
        "Group.Read.All": "Look up groups by display name or mail",
    },
    "teams": {
        "Team.Create": "Provision new Teams",
        "Group.Read.All": "Detect Teams that already exist",
        "User.Read.All": "Bind the team owner",
    },
    "sharepoint-sites": {
        "Sites.Read.All": "Enumerate sites and read drive quota",
    },
    "saml-certs": {
        "Application.Read.All": "Read SAML service principals and key credentials",
    },
}

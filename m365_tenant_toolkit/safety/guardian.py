"""
Safety Guardian — every outbound write passes through here.

Read-only unless the operator passed --commit. Even then only the writes
the toolkit's tools actually need are allowed: Teams creation on Graph and
a short list of group attributes over LDAP. Permitted writes and violations
are both kept for the run's audit record.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

logger = logging.getLogger("m365_tenant_toolkit.safety")

# ─── HTTP ────────────────────────────────────────────────────────────────────

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Graph queries that use POST without changing anything
SAFE_POST_ENDPOINTS = [
    re.compile(r"/\$batch$"),
    re.compile(r"/microsoft\.graph\.getByIds$"),
]

# Writes permitted in commit mode
ALLOWED_WRITE_ENDPOINTS = {
    "POST": [
        re.compile(r"/(v1\.0|beta)/teams$"),
    ],
}

# ─── LDAP ────────────────────────────────────────────────────────────────────

ALLOWED_LDAP_ATTRIBUTES = {"groupType", "mail", "mailNickname", "proxyAddresses"}


class SafetyViolation(Exception):
    """Raised when a write is attempted that the current mode does not allow."""
    pass


class SafetyGuardian:
    """
    Validates writes against the run mode and the allow-lists.
    Maintains an audit log of permitted writes and violations.
    """

    def __init__(self, allow_writes: bool = False):
        self.allow_writes = allow_writes
        self.violations: list[dict] = []
        self.writes: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()

    @property
    def mode(self) -> str:
        return "COMMIT" if self.allow_writes else "READ-ONLY"

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate an HTTP request.
        Returns True if allowed, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in ("GET", "HEAD", "OPTIONS"):
            return True

        if method_upper == "POST":
            for pattern in SAFE_POST_ENDPOINTS:
                if pattern.search(url):
                    return True

        if method_upper in WRITE_METHODS:
            if not self.allow_writes:
                self._record_violation(method_upper, url, "Write attempted in read-only mode")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: {method_upper} {url} blocked (run with --commit to apply changes)"
                )
            for pattern in ALLOWED_WRITE_ENDPOINTS.get(method_upper, []):
                if pattern.search(url.split("?", 1)[0]):
                    self._record_write("http", f"{method_upper} {url}")
                    return True
            self._record_violation(method_upper, url, "Write endpoint not on the allow-list")
            raise SafetyViolation(f"SAFETY VIOLATION: {method_upper} {url} is not an allowed write")

        return True

    def validate_ldap_modify(self, dn: str, attributes: Iterable[str]) -> bool:
        """Validate an LDAP modify of the given attributes on `dn`."""
        self.checks_performed += 1
        attrs = sorted(attributes)
        if not self.allow_writes:
            self._record_violation("MODIFY", dn, "Write attempted in read-only mode")
            raise SafetyViolation(
                f"SAFETY VIOLATION: LDAP modify of {dn} blocked (run with --commit to apply changes)"
            )
        blocked = [a for a in attrs if a not in ALLOWED_LDAP_ATTRIBUTES]
        if blocked:
            self._record_violation("MODIFY", dn, f"Attributes not on the allow-list: {', '.join(blocked)}")
            raise SafetyViolation(f"SAFETY VIOLATION: LDAP modify of {', '.join(blocked)} on {dn} is not allowed")
        self._record_write("ldap", f"MODIFY {dn} [{', '.join(attrs)}]")
        return True

    def _record_write(self, channel: str, target: str):
        self.writes.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "channel": channel,
            "target": target,
        })
        logger.info(f"Write permitted: {target}")

    def _record_violation(self, method: str, target: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "target": target,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {target}")

    def get_audit_record(self) -> dict:
        """Return the full safety audit record."""
        return {
            "safety_guardian": {
                "mode": self.mode,
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "writes_permitted": len(self.writes),
                "writes": self.writes,
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }

    def print_banner(self):
        """Print the run-mode banner."""
        print("=" * 75)
        if self.allow_writes:
            print("  COMMIT MODE -- allow-listed changes WILL be written to the directory")
            print("  * Teams creation (Graph) and group scope/mail attributes (LDAP) only")
            print("  * Every write is recorded in the run summary")
        else:
            print("  READ-ONLY / WHAT-IF MODE -- no changes will be made")
            print("  * Planned changes are reported but not applied")
            print("  * Re-run with --commit to apply them")
        print("=" * 75)

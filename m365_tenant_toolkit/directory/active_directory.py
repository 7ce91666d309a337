"""
Active Directory provider — on-premises lookups and group writes via LDAP.

Design Decisions:
-----------------
1. Uses ldap3 for cross-platform LDAP support (NTLM bind, simple bind fallback)
2. Objects are identified by distinguishedName; member DNs resolve without
   an extra lookup and the value is stable for the duration of a run
3. Writes go through the SafetyGuardian and touch only groupType and the
   mail attributes
4. ldap3 runs with its blocking SYNC strategy; lookups and writes are
   handed to a worker thread so the event loop is never held by the DC
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from ldap3 import BASE, MODIFY_REPLACE, NTLM, SIMPLE, SUBTREE, ALL, Connection, Server
from ldap3.core.exceptions import LDAPException, LDAPNoSuchObjectResult
from ldap3.utils.conv import escape_filter_chars

from ..config import LDAPConfig
from ..errors import SetupError
from ..safety.guardian import SafetyGuardian
from .models import DirectoryNode, GroupScope, NodeKind
from .provider import DirectoryProvider, ProviderError

logger = logging.getLogger("m365_tenant_toolkit.directory.ad")

# groupType flags
GROUP_TYPE_BUILTIN = 0x00000001
GROUP_TYPE_GLOBAL = 0x00000002
GROUP_TYPE_DOMAIN_LOCAL = 0x00000004
GROUP_TYPE_UNIVERSAL = 0x00000008
GROUP_TYPE_SECURITY = 0x80000000

SCOPE_FLAGS = {
    GroupScope.GLOBAL: GROUP_TYPE_GLOBAL,
    GroupScope.DOMAIN_LOCAL: GROUP_TYPE_DOMAIN_LOCAL,
    GroupScope.UNIVERSAL: GROUP_TYPE_UNIVERSAL,
}

OBJECT_ATTRIBUTES = [
    "objectClass", "sAMAccountName", "displayName", "cn",
    "userPrincipalName", "mail", "groupType",
]


def scope_from_group_type(group_type: Optional[int]) -> Optional[GroupScope]:
    """Decode the scope bits of an AD groupType value."""
    if group_type is None:
        return None
    value = int(group_type) & 0xFFFFFFFF
    for scope, flag in SCOPE_FLAGS.items():
        if value & flag:
            return scope
    return None


def group_type_for_scope(group_type: int, target: GroupScope) -> int:
    """
    Replace the scope bits of a groupType, keeping the security and builtin
    flags. Returns the signed 32-bit value AD stores.
    """
    value = int(group_type) & 0xFFFFFFFF
    value &= ~(GROUP_TYPE_GLOBAL | GROUP_TYPE_DOMAIN_LOCAL | GROUP_TYPE_UNIVERSAL)
    value |= SCOPE_FLAGS[target]
    if value & GROUP_TYPE_SECURITY:
        value -= 1 << 32
    return value


def scope_steps(current: GroupScope, target: GroupScope) -> list[GroupScope]:
    """AD only converts Global <-> DomainLocal by way of Universal."""
    if current is target:
        return []
    if {current, target} == {GroupScope.GLOBAL, GroupScope.DOMAIN_LOCAL}:
        return [GroupScope.UNIVERSAL, target]
    return [target]


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def entry_to_node(dn: str, attrs: dict) -> Optional[DirectoryNode]:
    """Map an LDAP search entry to a DirectoryNode; None for computers, contacts, etc."""
    classes = {c.lower() for c in (attrs.get("objectClass") or [])}
    if "group" in classes:
        kind = NodeKind.GROUP
    elif "user" in classes and "computer" not in classes:
        kind = NodeKind.USER
    else:
        return None

    sam = _first(attrs.get("sAMAccountName")) or ""
    display = _first(attrs.get("displayName")) or _first(attrs.get("cn")) or sam or dn
    group_type = _first(attrs.get("groupType"))
    return DirectoryNode(
        id=dn,
        display_name=str(display),
        kind=kind,
        principal_name=str(_first(attrs.get("userPrincipalName")) or sam),
        mail=str(_first(attrs.get("mail")) or ""),
        scope=scope_from_group_type(group_type) if kind is NodeKind.GROUP else None,
        distinguished_name=dn,
    )


class ActiveDirectory(DirectoryProvider):
    """
    DirectoryProvider for an on-premises domain.

    Usage:
        ad = ActiveDirectory(LDAPConfig(server="dc01", domain="corp.local",
                                        bind_user="CORP\\svc", bind_password="..."),
                             guardian)
        ad.connect()
        group = await ad.get_group("Sales-Global")
    """

    name = "Active Directory"

    def __init__(
        self,
        config: LDAPConfig,
        guardian: SafetyGuardian,
        connection: Optional[Connection] = None,
    ):
        self.config = config
        self.guardian = guardian
        self.connection = connection

    # ── Connection ──────────────────────────────────────────────────────────

    def connect(self) -> None:
        """Bind to the domain controller. Raises SetupError on failure."""
        if not self.config.server:
            raise SetupError("No domain controller configured (use --ldap-server or the profile)")
        if not self.config.base_dn:
            raise SetupError("No base DN: set --ad-domain or ldap.base_dn in the config")

        server = Server(
            self.config.server,
            port=self.config.port,
            use_ssl=self.config.use_ssl,
            get_info=ALL,
            connect_timeout=self.config.timeout,
        )
        user = self.config.bind_user
        logger.info(f"Connecting to {self.config.server}:{self.config.port} as {user or '(anonymous)'}")
        try:
            if not user:
                self.connection = Connection(server, auto_bind=True, receive_timeout=self.config.timeout)
            elif "\\" in user:
                self.connection = Connection(
                    server, user=user, password=self.config.bind_password,
                    authentication=NTLM, auto_bind=True, receive_timeout=self.config.timeout,
                )
            else:
                if "@" not in user and self.config.domain:
                    user = f"{user}@{self.config.domain}"
                self.connection = Connection(
                    server, user=user, password=self.config.bind_password,
                    authentication=SIMPLE, auto_bind=True, receive_timeout=self.config.timeout,
                )
        except LDAPException as e:
            raise SetupError(f"LDAP bind to {self.config.server} failed: {e}") from e
        logger.info(f"Connected to {self.config.server} (base DN {self.config.base_dn})")

    async def close(self) -> None:
        if self.connection is not None:
            await asyncio.to_thread(self.connection.unbind)
            self.connection = None

    # ── Search helpers ──────────────────────────────────────────────────────

    def _search(self, search_filter: str, base: Optional[str] = None, scope=SUBTREE) -> list[DirectoryNode]:
        if self.connection is None:
            raise ProviderError("Not connected to Active Directory")
        try:
            entries = self.connection.extend.standard.paged_search(
                search_base=base or self.config.base_dn,
                search_filter=search_filter,
                search_scope=scope,
                attributes=OBJECT_ATTRIBUTES,
                paged_size=self.config.page_size,
                generator=False,
            )
        except LDAPNoSuchObjectResult:
            return []
        except LDAPException as e:
            raise ProviderError(f"LDAP search {search_filter} failed: {e}") from e

        nodes = []
        for entry in entries:
            if entry.get("type") != "searchResEntry":
                continue
            node = entry_to_node(entry["dn"], entry.get("attributes", {}))
            if node is not None:
                nodes.append(node)
        return nodes

    async def _lookup(self, search_filter: str, base: Optional[str] = None, scope=SUBTREE) -> list[DirectoryNode]:
        return await asyncio.to_thread(self._search, search_filter, base, scope)

    def _single(self, nodes: list[DirectoryNode], identity: str) -> Optional[DirectoryNode]:
        if len(nodes) > 1:
            raise ProviderError(f"'{identity}' matches {len(nodes)} objects; use the distinguished name")
        return nodes[0] if nodes else None

    @staticmethod
    def _is_dn(identity: str) -> bool:
        return "=" in identity and "," in identity

    # ── DirectoryProvider ───────────────────────────────────────────────────

    async def get_group(self, identity: str) -> Optional[DirectoryNode]:
        if self._is_dn(identity):
            return self._single(await self._lookup("(objectClass=group)", base=identity, scope=BASE), identity)
        v = escape_filter_chars(identity)
        return self._single(await self._lookup(
            f"(&(objectClass=group)(|(sAMAccountName={v})(cn={v})(displayName={v})(mail={v})))"
        ), identity)

    async def get_group_members(self, group_id: str) -> list[DirectoryNode]:
        return await self._lookup(f"(memberOf={escape_filter_chars(group_id)})")

    async def get_parent_groups(self, node_id: str) -> list[DirectoryNode]:
        return await self._lookup(f"(&(objectClass=group)(member={escape_filter_chars(node_id)}))")

    async def find_object(self, identity: str) -> Optional[DirectoryNode]:
        if self._is_dn(identity):
            return self._single(await self._lookup("(objectClass=*)", base=identity, scope=BASE), identity)
        v = escape_filter_chars(identity)
        user = self._single(await self._lookup(
            f"(&(objectCategory=person)(objectClass=user)"
            f"(|(sAMAccountName={v})(userPrincipalName={v})(mail={v})(displayName={v})))"
        ), identity)
        if user is not None:
            return user
        return await self.get_group(identity)

    async def set_group_scope(self, group_id: str, target: GroupScope) -> None:
        current = await asyncio.to_thread(self._read_group_type, group_id)
        scope = scope_from_group_type(current)
        if scope is None:
            raise ProviderError(f"{group_id} has no recognizable scope (groupType={current})")
        for step in scope_steps(scope, target):
            new_value = group_type_for_scope(current, step)
            await asyncio.to_thread(self._modify, group_id, {"groupType": [(MODIFY_REPLACE, [new_value])]})
            logger.info(f"{group_id}: {scope.value} -> {step.value}")
            current, scope = new_value, step

    # ── Mail enablement ─────────────────────────────────────────────────────

    async def set_mail_attributes(self, group_id: str, mail: str, alias: str) -> None:
        """Stamp mail, mailNickname and the primary SMTP proxy address on a group."""
        await asyncio.to_thread(self._modify, group_id, {
            "mail": [(MODIFY_REPLACE, [mail])],
            "mailNickname": [(MODIFY_REPLACE, [alias])],
            "proxyAddresses": [(MODIFY_REPLACE, [f"SMTP:{mail}"])],
        })
        logger.info(f"{group_id}: mail={mail} alias={alias}")

    # ── Low-level ───────────────────────────────────────────────────────────

    def _read_group_type(self, group_id: str) -> int:
        if self.connection is None:
            raise ProviderError("Not connected to Active Directory")
        try:
            self.connection.search(group_id, "(objectClass=group)", search_scope=BASE, attributes=["groupType"])
        except LDAPException as e:
            raise ProviderError(f"Could not read groupType of {group_id}: {e}") from e
        if not self.connection.entries:
            raise ProviderError(f"Group not found: {group_id}")
        return int(self.connection.entries[0].groupType.value)

    def _modify(self, dn: str, changes: dict) -> None:
        if self.connection is None:
            raise ProviderError("Not connected to Active Directory")
        self.guardian.validate_ldap_modify(dn, changes.keys())
        try:
            ok = self.connection.modify(dn, changes)
        except LDAPException as e:
            raise ProviderError(f"LDAP modify of {dn} failed: {e}") from e
        if not ok:
            result = self.connection.result or {}
            raise ProviderError(
                f"LDAP modify of {dn} rejected: {result.get('description', 'error')} {result.get('message', '')}".strip()
            )

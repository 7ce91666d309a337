"""
M365 Tenant Toolkit — Main Orchestrator

Usage:
    python -m m365_tenant_toolkit members --group "Sales Staff"            # Entra ID, default profile
    python -m m365_tenant_toolkit members --input groups.csv --provider ad
    python -m m365_tenant_toolkit compare --input identities.csv
    python -m m365_tenant_toolkit convert-scope --input groups.csv --target-scope Universal
    python -m m365_tenant_toolkit convert-scope --input groups.csv --target-scope Universal \\
        --on-conflict resolve --commit
    python -m m365_tenant_toolkit enable-dl --input dls.csv --mail-domain contoso.com
    python -m m365_tenant_toolkit teams --input teams.csv
    python -m m365_tenant_toolkit sharepoint-sites
    python -m m365_tenant_toolkit saml-certs --warning-days 60
    python -m m365_tenant_toolkit permissions

Profile management:
    python -m m365_tenant_toolkit profile add <name> --tenant-id ... --client-id ...
    python -m m365_tenant_toolkit profile list
    python -m m365_tenant_toolkit profile remove <name>
    python -m m365_tenant_toolkit profile set-default <name>

Every tool is read-only unless --commit is given. Without it, tools that
change the directory report what they would do (WhatIf) and stop there.

Exit codes: 0 success, 1 setup error, 2 aborted.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .auth.authenticator import Authenticator, resolve_bind_password
from .config import (
    CertificateAuth,
    DelegatedAuth,
    LDAPConfig,
    REQUIRED_PERMISSIONS,
    ToolkitConfig,
)
from .directory.active_directory import ActiveDirectory
from .directory.entra import EntraDirectory
from .directory.models import GroupScope, ScopeConflict
from .directory.provider import DirectoryProvider
from .directory.snapshot import SnapshotDirectory
from .errors import SetupError, UserAbort
from .graph.client import GraphClient
from .inputs import detect_identity_column, read_identities, read_rows
from .logging_config import setup_logging
from .profiles import ProfileStore, TenantProfile, resolve_profile
from .reporting import export_csv, export_run_summary
from .safety.guardian import SafetyGuardian
from .scope.action_log import ActionLog
from .scope.gate import ResolutionPlan, Resolution
from .tasks import (
    BaseTask,
    DistributionGroupEnableTask,
    ExistenceComparisonTask,
    GroupMembershipTask,
    SamlCertificateTask,
    ScopeConversionTask,
    SharePointSiteReportTask,
    TeamsProvisioningTask,
)

logger = logging.getLogger("m365_tenant_toolkit")

EXIT_OK = 0
EXIT_SETUP_ERROR = 1
EXIT_ABORTED = 2

ON_CONFLICT = {
    "abort": Resolution.ABORT,
    "skip": Resolution.SKIP_CONFLICTING,
    "resolve": Resolution.RESOLVE_DEPENDENCIES_FIRST,
}


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    print("Usage: python -m m365_tenant_toolkit profile {add|list|remove|set-default}")
    return EXIT_OK


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m m365_tenant_toolkit profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --cert-path ./base64.txt")
        return EXIT_OK

    print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Client ID':<38s} {'Domain Controller':<24s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*38} {'─'*24} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        display = p.tenant_display_name or ""
        name_col = f"{p.name}" + (f" ({display})" if display else "")
        dc = p.ldap_server or "-"
        print(f"  {name_col:<20s} {p.tenant_id:<38s} {p.client_id:<38s} {dc:<24s}{default_marker}")
    print()
    return EXIT_OK


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        cert_path=args.cert_path or "./base64.txt",
        tenant_display_name=args.display_name or "",
        ldap_server=args.ldap_server or "",
        ad_domain=args.ad_domain or "",
        bind_user=args.bind_user or "",
        ldap_ssl=args.ldap_ssl,
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print(f"  ✅ Set as default profile.")
    return EXIT_OK


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
    else:
        print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_OK


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
    else:
        print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_OK


def _cmd_permissions(args: argparse.Namespace) -> int:
    """Print the Graph application permissions each tool needs."""
    tools = [args.tool] if args.tool else list(REQUIRED_PERMISSIONS)
    for tool in tools:
        print(f"\n  {tool}")
        for permission, reason in Authenticator.list_required_permissions(tool).items():
            print(f"    {permission:<28s} {reason}")
    print("\n  convert-scope and enable-dl use LDAP only; the bind account needs")
    print("  write access to groupType / mail, mailNickname, proxyAddresses.\n")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _common_options() -> argparse.ArgumentParser:
    """Connection and output options shared by every tool."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--profile", "-p",
        type=str,
        default=None,
        help="Tenant profile name to use (run 'profile list' to see available)",
    )
    common.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    common.add_argument(
        "--delegated",
        action="store_true",
        help="Use delegated (device-code) authentication instead of certificate",
    )
    common.add_argument("--tenant-id", type=str, default=None, help="Tenant ID (overrides profile)")
    common.add_argument("--client-id", type=str, default=None, help="Client ID (overrides profile)")
    common.add_argument("--cert-path", type=Path, help="Path to base64-encoded certificate file (overrides profile)")
    common.add_argument("--ldap-server", type=str, default=None, help="Domain controller (overrides profile)")
    common.add_argument("--ad-domain", type=str, default=None, help="AD DNS domain, e.g. corp.contoso.com")
    common.add_argument("--bind-user", type=str, default=None, help="LDAP bind account (DOMAIN\\user or UPN)")
    common.add_argument("--ldap-ssl", action="store_true", help="Use LDAPS (port 636)")
    common.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=None,
        help="Output directory for reports (default: ./m365_toolkit_output)",
    )
    common.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Console log level (default: INFO)",
    )
    return common


def _input_options(parser: argparse.ArgumentParser, required: bool = True):
    parser.add_argument("--input", "-i", type=Path, required=required, help="Input CSV file")
    parser.add_argument("--column", type=str, default=None, help="Identity column (auto-detected if omitted)")


def _provider_option(parser: argparse.ArgumentParser, choices: list[str], default: str):
    parser.add_argument("--provider", choices=choices, default=default,
                        help=f"Directory to query (default: {default})")
    parser.add_argument("--snapshot", type=Path, help="Directory snapshot JSON (with --provider snapshot)")


def _commit_option(parser: argparse.ArgumentParser):
    parser.add_argument("--commit", action="store_true",
                        help="Apply changes (default is a read-only what-if run)")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="m365-toolkit",
        description="M365 Tenant Toolkit (read-only unless --commit)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Tools and management commands")
    common = _common_options()

    # --- profile management ---
    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX (default: ./base64.txt)")
    add_p.add_argument("--display-name", help="Friendly tenant display name for reports")
    add_p.add_argument("--ldap-server", help="Domain controller for the on-premises domain")
    add_p.add_argument("--ad-domain", help="AD DNS domain, e.g. corp.contoso.com")
    add_p.add_argument("--bind-user", help="LDAP bind account (DOMAIN\\user or UPN)")
    add_p.add_argument("--ldap-ssl", action="store_true", help="Use LDAPS (port 636)")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- permissions ---
    perm_p = subparsers.add_parser("permissions", help="Show the Graph permissions each tool needs")
    perm_p.add_argument("tool", nargs="?", choices=sorted(REQUIRED_PERMISSIONS), help="Limit to one tool")

    # --- members ---
    members_p = subparsers.add_parser("members", parents=[common],
                                      help="Recursive group membership report")
    members_p.add_argument("--group", "-g", action="append", default=[], help="Root group (repeatable)")
    _input_options(members_p, required=False)
    _provider_option(members_p, ["entra", "ad", "snapshot"], "entra")
    members_p.add_argument("--no-dedup", action="store_true",
                           help="Report a member once per path instead of once per root group")
    members_p.add_argument("--include-groups", action="store_true", help="Add rows for nested groups")
    members_p.add_argument("--max-depth", type=int, default=None, help="Nesting levels to expand (default: 100)")

    # --- compare ---
    compare_p = subparsers.add_parser("compare", parents=[common],
                                      help="Existence comparison of identities in AD and Entra ID")
    _input_options(compare_p)
    compare_p.add_argument("--ad-snapshot", type=Path, help="Use a snapshot file instead of Active Directory")
    compare_p.add_argument("--entra-snapshot", type=Path, help="Use a snapshot file instead of Entra ID")

    # --- convert-scope ---
    convert_p = subparsers.add_parser("convert-scope", parents=[common],
                                      help="Group scope conversion with conflict detection")
    _input_options(convert_p, required=False)
    convert_p.add_argument("--group", "-g", action="append", default=[], help="Group to convert (repeatable)")
    convert_p.add_argument("--target-scope", required=True, type=GroupScope.parse,
                           help="Global, Universal or DomainLocal")
    convert_p.add_argument("--on-conflict", choices=["abort", "skip", "resolve", "prompt"], default="prompt",
                           help="What to do when conflicts are found (default: prompt)")
    convert_p.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation before committing")
    _provider_option(convert_p, ["ad", "snapshot"], "ad")
    _commit_option(convert_p)

    # --- enable-dl ---
    dl_p = subparsers.add_parser("enable-dl", parents=[common],
                                 help="Mail-enable AD groups as distribution groups")
    _input_options(dl_p)
    dl_p.add_argument("--mail-domain", type=str, default=None,
                      help="SMTP domain used when the CSV has no PrimarySmtpAddress")
    _commit_option(dl_p)

    # --- teams ---
    teams_p = subparsers.add_parser("teams", parents=[common], help="Provision Teams from a CSV")
    teams_p.add_argument("--input", "-i", type=Path, required=True,
                         help="CSV with TeamName, Description, Owner, Visibility")
    _commit_option(teams_p)

    # --- sharepoint-sites ---
    subparsers.add_parser("sharepoint-sites", parents=[common], help="SharePoint site storage report")

    # --- saml-certs ---
    saml_p = subparsers.add_parser("saml-certs", parents=[common], help="SAML signing certificate expiry report")
    saml_p.add_argument("--warning-days", type=int, default=None,
                        help="Flag certificates expiring within N days (default: 30)")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
    return args


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace) -> ToolkitConfig:
    """Build configuration from config file, profile, and CLI flags (in that order)."""
    if args.config:
        config = ToolkitConfig.from_file(args.config)
    else:
        config = ToolkitConfig()

    if args.delegated:
        config.auth.mode = "delegated"
    if args.log_level:
        config.log_level = args.log_level
    if args.output_dir:
        config.output.base_dir = str(args.output_dir)

    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise SetupError(f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles.")
    elif not args.config and not args.tenant_id:
        profile = resolve_profile()

    # --- Graph app registration ---
    tenant_id = client_id = cert_path = ""
    if config.auth.certificate:
        tenant_id = config.auth.certificate.tenant_id
        client_id = config.auth.certificate.client_id
        cert_path = config.auth.certificate.certificate_path
    elif config.auth.delegated:
        tenant_id = config.auth.delegated.tenant_id
        client_id = config.auth.delegated.client_id
    if profile:
        tenant_id = profile.tenant_id
        client_id = profile.client_id
        cert_path = profile.resolve_cert_path()
    tenant_id = args.tenant_id or tenant_id
    client_id = args.client_id or client_id
    cert_path = str(args.cert_path) if args.cert_path else (cert_path or "./base64.txt")

    if tenant_id and client_id:
        if config.auth.mode == "delegated":
            config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
        else:
            password = config.auth.certificate.certificate_password if config.auth.certificate else ""
            config.auth.certificate = CertificateAuth(
                tenant_id=tenant_id,
                client_id=client_id,
                certificate_path=cert_path,
                certificate_password=password,
            )

    # --- Domain controller ---
    ldap = config.ldap
    server = args.ldap_server or (profile.ldap_server if profile else "") or ldap.server
    domain = args.ad_domain or (profile.ad_domain if profile else "") or ldap.domain
    bind_user = args.bind_user or (profile.bind_user if profile else "") or ldap.bind_user
    use_ssl = args.ldap_ssl or (profile.ldap_ssl if profile else False) or ldap.use_ssl
    port = ldap.port if ldap.use_ssl == use_ssl else None
    base_dn = ldap.base_dn if domain == ldap.domain else ""
    config.ldap = LDAPConfig(
        server=server,
        domain=domain,
        base_dn=base_dn,
        bind_user=bind_user,
        bind_password=ldap.bind_password,
        use_ssl=use_ssl,
        port=port,
        page_size=ldap.page_size,
        timeout=ldap.timeout,
    )

    # --- Tool options ---
    if getattr(args, "no_dedup", False):
        config.report.deduplicate_members = False
    if getattr(args, "include_groups", False):
        config.report.include_nested_groups = True
    if getattr(args, "max_depth", None) is not None:
        config.report.max_depth = args.max_depth
    if getattr(args, "warning_days", None) is not None:
        config.report.expiry_warning_days = args.warning_days
    if getattr(args, "mail_domain", None):
        config.report.mail_domain = args.mail_domain

    return config


def _require_graph_auth(config: ToolkitConfig):
    if config.auth.mode == "delegated" and config.auth.delegated:
        return
    if config.auth.mode == "certificate" and config.auth.certificate:
        return
    raise SetupError(
        "No tenant credentials found. Use --profile <name>, "
        "--tenant-id X --client-id Y, or --config config.json"
    )


# ---------------------------------------------------------------------------
# Conflict Gate adapters
# ---------------------------------------------------------------------------

def prompt_resolution(conflicts: list[ScopeConflict]) -> Resolution:
    """Interactive decider: show the conflicts and ask how to proceed."""
    print(f"\n  ⚠  {len(conflicts)} scope conflict(s) detected:\n")
    for conflict in conflicts:
        print(f"     • {conflict.reason}")
    print()
    print("  [A]bort                      convert nothing")
    print("  [S]kip conflicting groups    convert only the groups without conflicts")
    print("  [R]esolve dependencies first convert the related groups, then the batch")
    while True:
        try:
            answer = input("\n  Choice [A/S/R]: ").strip().lower()
        except EOFError:
            return Resolution.ABORT
        if answer in ("a", "abort", ""):
            return Resolution.ABORT
        if answer in ("s", "skip"):
            return Resolution.SKIP_CONFLICTING
        if answer in ("r", "resolve"):
            return Resolution.RESOLVE_DEPENDENCIES_FIRST
        print("  Please answer A, S or R.")


def fixed_resolution(resolution: Resolution):
    """Non-interactive decider that always returns the same choice."""
    def decide(conflicts: list[ScopeConflict]) -> Resolution:
        logger.info(f"{len(conflicts)} conflict(s); resolution preset to {resolution.value}")
        return resolution
    return decide


def confirm_plan(plan: ResolutionPlan) -> bool:
    """Ask before any scope change is written."""
    print(f"\n  About to change the scope of {len(plan.convert)} group(s)"
          f" and {len(plan.dependencies)} related group(s):")
    for dep, scope in plan.dependencies:
        print(f"     • {dep.display_name} -> {scope.value} (dependency)")
    for cand in plan.convert:
        if cand.needs_change:
            print(f"     • {cand.group.display_name}: {cand.current_scope.value} -> {cand.target_scope.value}")
    try:
        answer = input("\n  Proceed? [y/N]: ").strip().lower()
    except EOFError:
        return False
    return answer in ("y", "yes")


# ---------------------------------------------------------------------------
# Providers and tasks
# ---------------------------------------------------------------------------

def _collect_identities(args: argparse.Namespace) -> list[str]:
    identities = list(getattr(args, "group", []) or [])
    if args.input:
        column, from_file = read_identities(args.input, args.column)
        print(f"  📄 {len(from_file)} identities from {args.input} (column '{column}')")
        identities.extend(from_file)
    identities = list(dict.fromkeys(i.strip() for i in identities if i.strip()))
    if not identities:
        raise SetupError("Nothing to process: give --group and/or --input")
    return identities


async def _open_graph(
    config: ToolkitConfig,
    guardian: SafetyGuardian,
    stack: contextlib.AsyncExitStack,
) -> GraphClient:
    _require_graph_auth(config)
    print("\n🔐 Authenticating to Microsoft Graph...")
    token = await Authenticator(config.auth).acquire_token()
    print("✅ Authentication successful.")
    return await stack.enter_async_context(GraphClient(access_token=token, guardian=guardian))


def _open_ad(config: ToolkitConfig, guardian: SafetyGuardian) -> ActiveDirectory:
    resolve_bind_password(config.ldap)
    ad = ActiveDirectory(config.ldap, guardian)
    print(f"\n🔌 Connecting to {config.ldap.server or '(no domain controller)'}...")
    ad.connect()
    print("✅ Connected to Active Directory.")
    return ad


async def _open_provider(
    kind: str,
    snapshot: Optional[Path],
    config: ToolkitConfig,
    guardian: SafetyGuardian,
    stack: contextlib.AsyncExitStack,
) -> DirectoryProvider:
    if kind == "snapshot":
        if not snapshot:
            raise SetupError("--provider snapshot needs --snapshot FILE")
        return SnapshotDirectory.from_file(snapshot)
    if kind == "ad":
        ad = _open_ad(config, guardian)
        stack.push_async_callback(ad.close)
        return ad
    graph = await _open_graph(config, guardian, stack)
    return EntraDirectory(graph)


async def build_task(
    args: argparse.Namespace,
    config: ToolkitConfig,
    guardian: SafetyGuardian,
    stack: contextlib.AsyncExitStack,
) -> tuple[BaseTask, Optional[GraphClient]]:
    """Read the inputs, open the directories a tool needs and build it."""
    command = args.command
    graph: Optional[GraphClient] = None

    if command == "members":
        groups = _collect_identities(args)
        provider = await _open_provider(args.provider, args.snapshot, config, guardian, stack)
        graph = getattr(provider, "graph", None)
        task = GroupMembershipTask(
            provider,
            groups,
            deduplicate=config.report.deduplicate_members,
            include_groups=config.report.include_nested_groups,
            max_depth=config.report.max_depth,
        )

    elif command == "compare":
        identities = _collect_identities(args)
        if args.ad_snapshot:
            ad = SnapshotDirectory.from_file(args.ad_snapshot)
        else:
            ad = _open_ad(config, guardian)
            stack.push_async_callback(ad.close)
        if args.entra_snapshot:
            entra = SnapshotDirectory.from_file(args.entra_snapshot)
        else:
            graph = await _open_graph(config, guardian, stack)
            entra = EntraDirectory(graph)
        task = ExistenceComparisonTask(ad, entra, identities)

    elif command == "convert-scope":
        identities = _collect_identities(args)
        provider = await _open_provider(args.provider, args.snapshot, config, guardian, stack)
        if args.on_conflict == "prompt":
            decide = prompt_resolution
        else:
            decide = fixed_resolution(ON_CONFLICT[args.on_conflict])
        action_log = ActionLog(config.output.run_dir / f"scope_actions_{config.output.timestamp}.jsonl")
        task = ScopeConversionTask(
            provider,
            identities,
            args.target_scope,
            decide=decide,
            confirm=None if args.yes else confirm_plan,
            action_log=action_log,
            commit=args.commit,
        )

    elif command == "enable-dl":
        headers, rows = read_rows(args.input)
        column = detect_identity_column(headers, args.column)
        print(f"  📄 {len(rows)} rows from {args.input} (column '{column}')")
        ad = _open_ad(config, guardian)
        stack.push_async_callback(ad.close)
        task = DistributionGroupEnableTask(
            ad, rows, column, mail_domain=config.report.mail_domain, commit=args.commit,
        )

    elif command == "teams":
        headers, rows = read_rows(args.input)
        if "TeamName" not in headers and "DisplayName" not in headers:
            raise SetupError(f"{args.input} has no TeamName column")
        print(f"  📄 {len(rows)} rows from {args.input}")
        graph = await _open_graph(config, guardian, stack)
        task = TeamsProvisioningTask(graph, rows, commit=args.commit)

    elif command == "sharepoint-sites":
        graph = await _open_graph(config, guardian, stack)
        task = SharePointSiteReportTask(graph)

    elif command == "saml-certs":
        graph = await _open_graph(config, guardian, stack)
        task = SamlCertificateTask(graph, warning_days=config.report.expiry_warning_days)

    else:
        raise SetupError(f"Unknown command: {command}")

    return task, graph


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

async def run_tool(args: argparse.Namespace) -> int:
    """Run one tool end to end and return the process exit code."""
    config = build_config(args)
    setup_logging(config.log_level)

    guardian = SafetyGuardian(allow_writes=getattr(args, "commit", False))
    guardian.print_banner()

    print("=" * 70)
    print(f" M365 Tenant Toolkit v{__version__}: {args.command}")
    print(f" Mode: {guardian.mode}")
    print("=" * 70)

    run_id = config.output.timestamp
    output_dir = config.output.run_dir

    async with contextlib.AsyncExitStack() as stack:
        task, graph = await build_task(args, config, guardian, stack)

        # Inputs and connections are good; from here on the run leaves output
        config.output.create_directories()
        setup_logging(config.log_level, config.output.log_dir)
        print(f"\n📋 Run ID: {run_id}")
        print(f"📂 Output: {output_dir.resolve()}")

        print("\n" + "=" * 70)
        print(f" {task.description.upper()}")
        print("=" * 70 + "\n")
        result = await task.execute()

        audit = guardian.get_audit_record()
        if graph is not None:
            audit["graph_client"] = graph.get_stats()

    created = [export_csv(result.rows, result.columns, output_dir, task.name, run_id)]
    if isinstance(task, ScopeConversionTask):
        created.append(task.action_log.path)
    summary = export_run_summary(result, output_dir, run_id, audit_record=audit, created_files=created)

    print("\n" + "=" * 70)
    print(" RUN COMPLETE")
    print("=" * 70)
    for status, count in sorted(result.metadata["status_counts"].items()):
        print(f"  {status:<20s} {count}")
    if result.metadata["warnings"]:
        print(f"  ⚠  {len(result.metadata['warnings'])} warning(s), see the log")
    for error in result.metadata["errors"]:
        print(f"  ❌ {error}")
    for path in created:
        print(f"  📊 {path}")
    print(f"  📄 {summary}")
    print()

    if result.metadata.get("failed"):
        return EXIT_SETUP_ERROR
    if isinstance(task, ScopeConversionTask) and task.outcome and task.outcome.aborted:
        reason = "by the operator" if task.outcome.user_aborted else "because of unresolved conflicts"
        converted = task.outcome.dependencies_converted
        if converted:
            print(f"  ⛔ Scope conversion aborted {reason}; no batch group was converted, "
                  f"{len(converted)} related group(s) already were (see the action log).\n")
        else:
            print(f"  ⛔ Scope conversion aborted {reason}; no changes were made.\n")
        return EXIT_ABORTED
    return EXIT_OK


async def main_async(argv: Optional[list[str]] = None) -> int:
    """Async entry point."""
    args = parse_args(argv)

    if not args.command:
        return EXIT_OK
    if args.command == "profile":
        return _cmd_profile(args)
    if args.command == "permissions":
        return _cmd_permissions(args)

    try:
        return await run_tool(args)
    except SetupError as e:
        logger.error(str(e))
        print(f"\n❌ {e}")
        return EXIT_SETUP_ERROR
    except UserAbort as e:
        logger.warning(f"Aborted: {e}")
        print(f"\n⛔ Aborted: {e}")
        return EXIT_ABORTED


def _configure_console():
    """Windows consoles default to a legacy code page; status glyphs need UTF-8."""
    if sys.platform != "win32":
        return
    for stream in (sys.stdout, sys.stderr):
        if hasattr(stream, "reconfigure"):
            stream.reconfigure(encoding="utf-8", errors="replace")


def main():
    """Synchronous entry point for `python -m m365_tenant_toolkit` and `m365-toolkit`."""
    _configure_console()
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()

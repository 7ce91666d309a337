"""
M365 Tenant Toolkit
===================
Administration tools for Microsoft 365 tenants with on-premises Active
Directory: nested group membership reports, AD vs Entra ID existence
comparison, group scope conversion with conflict detection, distribution
group enablement, Teams provisioning, SharePoint site and SAML certificate
reports.

Changes are only written when a tool is run with --commit.
"""

__version__ = "1.0.0"
__author__ = "M365 Tenant Toolkit"

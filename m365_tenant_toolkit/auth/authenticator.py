"""
Authentication module — certificate-based and delegated auth for Graph,
plus the bind password for the domain controller.
Uses MSAL for token acquisition against Microsoft Identity Platform.
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import AuthConfig, LDAPConfig, REQUIRED_PERMISSIONS
from ..errors import SetupError

logger = logging.getLogger("m365_tenant_toolkit.auth")

# Default scopes for app-only auth
APP_SCOPES = ["https://graph.microsoft.com/.default"]

CERT_PASSWORD_ENV = "M365_CERT_PASSWORD"
BIND_PASSWORD_ENV = "AD_BIND_PASSWORD"


class AuthenticationError(SetupError):
    """Raised when authentication fails."""
    pass


def load_pfx_credential(cert_path: str, password: str) -> dict:
    """
    Read a base64-encoded PFX and return the MSAL client credential
    (thumbprint + PEM private key).
    """
    try:
        with open(cert_path, "r") as f:
            cert_base64 = f.read().strip()
    except FileNotFoundError:
        raise AuthenticationError(
            f"Certificate file not found: {cert_path}. "
            "Pass --cert-path or set cert_path in the profile."
        )

    try:
        cert_bytes = base64.b64decode(cert_base64)
        password_bytes = password.encode("utf-8") if password else None
        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            cert_bytes, password_bytes
        )
    except ValueError as e:
        raise AuthenticationError(f"Failed to load certificate: {e}")

    if private_key is None or certificate is None:
        raise AuthenticationError(f"{cert_path} does not contain a private key and certificate")

    private_key_pem = private_key.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    ).decode("utf-8")
    thumbprint = certificate.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")

    return {"thumbprint": thumbprint, "private_key": private_key_pem}


def resolve_bind_password(ldap: LDAPConfig, interactive: bool = True) -> str:
    """
    Fill in the LDAP bind password from the environment or a prompt.
    Anonymous binds (no bind user) need no password.
    """
    if ldap.bind_password or not ldap.bind_user:
        return ldap.bind_password
    password = os.environ.get(BIND_PASSWORD_ENV, "")
    if not password and interactive:
        password = getpass.getpass(f"Password for {ldap.bind_user}: ")
    ldap.bind_password = password
    return password


class Authenticator:
    """
    Handles MSAL-based authentication for Microsoft Graph.
    Supports:
      - Certificate-based app-only authentication
      - Delegated interactive authentication (device code flow)
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self._access_token: Optional[str] = None

    async def acquire_token(self) -> str:
        """Acquire an access token based on configured auth mode."""
        if self.config.mode == "certificate":
            return self._acquire_certificate_token()
        elif self.config.mode == "delegated":
            return self._acquire_delegated_token()
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

    def _acquire_certificate_token(self) -> str:
        """Acquire token using certificate-based client credentials."""
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        logger.info("Authenticating with certificate-based app credentials...")

        password = cert_config.certificate_password
        if not password:
            password = os.environ.get(CERT_PASSWORD_ENV, "")
        if not password:
            password = getpass.getpass("Enter the certificate password: ")

        credential = load_pfx_credential(cert_config.certificate_path, password)

        app = msal.ConfidentialClientApplication(
            client_id=cert_config.client_id,
            authority=f"https://login.microsoftonline.com/{cert_config.tenant_id}",
            client_credential=credential,
        )

        result = app.acquire_token_for_client(scopes=APP_SCOPES)

        if "access_token" in result:
            self._access_token = result["access_token"]
            logger.info("Certificate authentication successful.")
            return self._access_token
        else:
            error = result.get("error_description", result.get("error", "Unknown"))
            raise AuthenticationError(f"Certificate auth failed: {error}")

    def _acquire_delegated_token(self) -> str:
        """Acquire token using delegated (device code) flow."""
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        logger.info("Initiating device code authentication flow...")

        app = msal.PublicClientApplication(
            client_id=deleg_config.client_id,
            authority=f"https://login.microsoftonline.com/{deleg_config.tenant_id}",
        )

        flow = app.initiate_device_flow(scopes=deleg_config.scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        result = app.acquire_token_by_device_flow(flow)

        if "access_token" in result:
            self._access_token = result["access_token"]
            logger.info("Delegated authentication successful.")
            return self._access_token
        else:
            error = result.get("error_description", result.get("error", "Unknown"))
            raise AuthenticationError(f"Delegated auth failed: {error}")

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @staticmethod
    def list_required_permissions(tool: Optional[str] = None) -> dict:
        """Return the Graph API permissions, for one tool or all of them."""
        if tool:
            return REQUIRED_PERMISSIONS.get(tool, {})
        return REQUIRED_PERMISSIONS

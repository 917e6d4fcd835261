"""
Microsoft Graph authentication - delegated access.

The gateway acts on behalf of the signed-in user through
``azure.identity.InteractiveBrowserCredential``:

- The first interactive sign-in saves an ``AuthenticationRecord`` (by default
  to ``~/.m365-gateway-auth.json``).
- Later runs load that record and authenticate silently from the persistent
  token cache; the Azure SDK refreshes tokens on its own.

Requirements:
- Azure AD app registration with public client flow enabled
- ``M365_GATEWAY_CLIENT_ID`` (and optionally ``M365_GATEWAY_TENANT_ID``,
  ``M365_GATEWAY_REDIRECT_URI``) in the environment
- A web browser for the first sign-in (``m365-gateway-login``)
"""

import json
import logging
from pathlib import Path
from typing import Optional

from azure.core.credentials import AccessToken
from azure.identity import (
    AuthenticationRecord,
    InteractiveBrowserCredential,
    TokenCachePersistenceOptions,
)

from .config import GatewaySettings
from .errors import GatewayError

logger = logging.getLogger(__name__)

# Delegated permissions needed by the mail, calendar, files and people modules
SCOPES = [
    "User.Read",
    "User.ReadBasic.All",
    "Mail.ReadWrite",
    "Mail.Send",
    "Calendars.ReadWrite",
    "Files.ReadWrite",
    "People.Read",
]


class AuthenticationRequiredError(GatewayError):
    """No token could be acquired without user interaction."""

    default_category = "auth"


class AzureAuthentication:
    """
    Azure authentication for Microsoft Graph with delegated access.

    Relies on the Azure SDK's token cache and ``AuthenticationRecord`` so that
    the user signs in once and later processes authenticate silently.
    """

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        auth_record_file: Optional[Path] = None,
    ):
        self.settings = settings or GatewaySettings.from_env()
        self.auth_record_file = auth_record_file or self.settings.auth_record_file
        self._credential_instance: Optional[InteractiveBrowserCredential] = None

    def _read_auth_record(self) -> Optional[AuthenticationRecord]:
        """Read AuthenticationRecord from file"""
        if not self.auth_record_file.exists():
            logger.info("No AuthenticationRecord file found")
            return None
        try:
            with open(self.auth_record_file, "r") as f:
                auth_record = AuthenticationRecord.deserialize(
                    json.dumps(json.load(f))
                )
            logger.info("AuthenticationRecord loaded successfully")
            return auth_record
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to read AuthenticationRecord: {e}")
            return None

    def _write_auth_record(self, auth_record: AuthenticationRecord) -> None:
        """Write AuthenticationRecord to file"""
        try:
            self.auth_record_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.auth_record_file, "w") as f:
                json.dump(json.loads(auth_record.serialize()), f, indent=2)
            logger.info("AuthenticationRecord saved successfully")
        except OSError as e:
            logger.warning(f"Failed to write AuthenticationRecord: {e}")

    def get_credential(self) -> InteractiveBrowserCredential:
        """Create (once) the InteractiveBrowserCredential for delegated access."""
        if self._credential_instance is not None:
            return self._credential_instance

        client_id = self.settings.client_id
        if not client_id:
            logger.error("M365_GATEWAY_CLIENT_ID environment variable not found")
            raise ValueError("M365_GATEWAY_CLIENT_ID environment variable is required")

        logger.info(f"Using tenant ID: {self.settings.tenant_id}")

        credential_kwargs = {
            "client_id": client_id,
            "tenant_id": self.settings.tenant_id,
            "cache_persistence_options": TokenCachePersistenceOptions(
                allow_unencrypted_storage=True, name=self.settings.token_cache_name
            ),
        }

        auth_record = self._read_auth_record()
        if auth_record:
            credential_kwargs["authentication_record"] = auth_record
            logger.info("Using existing AuthenticationRecord for silent authentication")

        if self.settings.redirect_uri:
            logger.info(f"Using custom redirect URI: {self.settings.redirect_uri}")
            credential_kwargs["redirect_uri"] = self.settings.redirect_uri

        self._credential_instance = InteractiveBrowserCredential(**credential_kwargs)
        return self._credential_instance

    def authenticate(self) -> AuthenticationRecord:
        """
        Perform interactive authentication and save the AuthenticationRecord.
        Must be called at least once (see ``m365-gateway-login``).
        """
        logger.info("Performing interactive authentication")
        auth_record = self.get_credential().authenticate(scopes=SCOPES)
        self._write_auth_record(auth_record)
        logger.info("Authentication completed and record saved")
        return auth_record

    def get_access_token(self) -> AccessToken:
        """Get an AccessToken for Microsoft Graph, signing in if never done before."""
        credential = self.get_credential()
        try:
            return credential.get_token(*SCOPES)
        except Exception as e:
            logger.error(f"Failed to acquire access token: {e}")
            if self.auth_record_file.exists():
                # The saved record no longer works; start over on the next call
                self.clear_cache()
                raise AuthenticationRequiredError(
                    f"Failed to acquire access token: {e}"
                ) from e

        logger.info("No AuthenticationRecord found, attempting interactive authentication")
        self.authenticate()
        return credential.get_token(*SCOPES)

    def get_token(self) -> str:
        return self.get_access_token().token

    def get_token_with_details(self) -> tuple[str, int]:
        """
        Returns:
            Tuple of (token_string, expires_on_timestamp)
        """
        token = self.get_access_token()
        return token.token, token.expires_on

    def exists_valid_token(self) -> bool:
        """Whether a token can be obtained silently."""
        if not self.auth_record_file.exists():
            return False
        try:
            return self.get_credential().get_token(*SCOPES) is not None
        except Exception:
            return False

    def clear_cache(self) -> None:
        """Remove the AuthenticationRecord and force re-authentication"""
        try:
            if self.auth_record_file.exists():
                self.auth_record_file.unlink()
                logger.info("AuthenticationRecord cleared successfully")
        except OSError as e:
            logger.warning(f"Failed to clear cache: {e}")
        self._credential_instance = None

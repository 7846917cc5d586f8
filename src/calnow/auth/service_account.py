"""Google service account authentication.

A service account key authenticates server-to-server without a consent step
or a token cache; google-auth mints short-lived tokens from the key itself.
The calendar being read must be shared with the service account email.

Example:
    >>> auth = ServiceAccountAuth("service_account_key.json")
    >>> service = auth.build_service("calendar", "v3")
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from google.oauth2 import service_account
from googleapiclient.discovery import build

from calnow.config import DEFAULT_SCOPES, resolve_scopes
from calnow.exceptions import ConfigInvalid, CredentialsNotFoundError

logger = logging.getLogger(__name__)


def is_service_account_file(path: str | Path) -> bool:
    """True if ``path`` is a JSON service account key."""
    try:
        with open(Path(path).expanduser()) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        return False
    return isinstance(data, dict) and data.get("type") == "service_account"


class ServiceAccountAuth:
    """Service account credentials for the Calendar API."""

    def __init__(
        self,
        key_path: str | Path,
        scopes: list[str] | None = None,
    ):
        """Load a service account key.

        Args:
            key_path: Path to service account JSON key file.
            scopes: Scope names or full URLs. Defaults to read-only calendar.

        Raises:
            CredentialsNotFoundError: If key file not found.
            ConfigInvalid: If key file is invalid.
        """
        self.key_path = Path(key_path).expanduser()

        if not self.key_path.exists():
            raise CredentialsNotFoundError(str(self.key_path))

        try:
            self.scopes = list(resolve_scopes(scopes or DEFAULT_SCOPES))
        except ValueError as e:
            raise ConfigInvalid(str(e)) from e

        try:
            with open(self.key_path) as f:
                key_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigInvalid(f"Invalid JSON in key file: {e}") from e

        if not isinstance(key_data, dict) or key_data.get("type") != "service_account":
            found = key_data.get("type") if isinstance(key_data, dict) else None
            raise ConfigInvalid(
                f"Invalid key file: expected type 'service_account', got '{found}'"
            )

        self.client_email = key_data.get("client_email", "")
        self.project_id = key_data.get("project_id", "")

        try:
            self._credentials = service_account.Credentials.from_service_account_info(
                key_data,
                scopes=self.scopes,
            )
        except (KeyError, ValueError) as e:
            raise ConfigInvalid(f"Unusable service account key: {e}") from e

        logger.info(f"Service account initialized: {self.client_email}")

    @property
    def credentials(self):
        return self._credentials

    @property
    def email(self) -> str:
        """Share the calendar with this address to grant access."""
        return self.client_email

    def build_service(self, service_name: str = "calendar", version: str = "v3"):
        return build(
            service_name,
            version,
            credentials=self._credentials,
            cache_discovery=False,
        )

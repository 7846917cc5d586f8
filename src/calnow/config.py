"""Credential locations and OAuth client configuration.

By default everything lives under ``~/.calnow`` (override with CALNOW_HOME):
    .env              - optional environment overrides
    credentials.json  - OAuth client credentials (or a service account key)
    token.json        - cached OAuth token

The .env file is loaded on import; variables already present in the
environment take precedence.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from calnow.exceptions import ConfigInvalid, CredentialsNotFoundError

CALNOW_HOME = Path(os.environ.get("CALNOW_HOME", "~/.calnow")).expanduser()
ENV_FILE = CALNOW_HOME / ".env"

# Redirect target telling Google to display the code instead of redirecting
OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"

DEFAULT_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

SCOPES = {
    "calendar": "https://www.googleapis.com/auth/calendar",
    "calendar_readonly": "https://www.googleapis.com/auth/calendar.readonly",
    "calendar_events": "https://www.googleapis.com/auth/calendar.events",
    "calendar_events_readonly": "https://www.googleapis.com/auth/calendar.events.readonly",
}

DEFAULT_SCOPES = ["calendar_readonly"]


def _load_env_file(env_path: Path) -> dict[str, str]:
    """Load environment variables from a file.

    Args:
        env_path: Path to .env file.

    Returns:
        Dictionary of loaded variables.
    """
    loaded = {}
    if not env_path.exists():
        return loaded

    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            if (value.startswith('"') and value.endswith('"')) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]

            if key and key not in os.environ:
                os.environ[key] = value
                loaded[key] = value

    return loaded


def credentials_path() -> Path:
    """Default OAuth client credentials file."""
    default = CALNOW_HOME / "credentials.json"
    return Path(os.environ.get("CALNOW_CREDENTIALS", default)).expanduser()


def token_path() -> Path:
    """Default token cache file."""
    return Path(os.environ.get("CALNOW_TOKEN", CALNOW_HOME / "token.json")).expanduser()


def default_calendar() -> str | None:
    return os.environ.get("CALNOW_CALENDAR") or None


def resolve_scopes(scopes: list[str]) -> tuple[str, ...]:
    """Resolve scope names to full URLs."""
    resolved = []
    for scope in scopes:
        if scope.startswith("https://"):
            resolved.append(scope)
        elif scope in SCOPES:
            resolved.append(SCOPES[scope])
        else:
            raise ValueError(
                f"Unknown scope: {scope}. Use full URL or one of: {list(SCOPES.keys())}"
            )
    return tuple(resolved)


@dataclass(frozen=True)
class ClientConfig:
    """OAuth client identity and endpoints for one run."""

    client_id: str
    client_secret: str | None
    auth_uri: str = DEFAULT_AUTH_URI
    token_uri: str = DEFAULT_TOKEN_URI
    redirect_uri: str = OOB_REDIRECT_URI
    scopes: tuple[str, ...] = ()

    @classmethod
    def from_file(cls, path: str | Path, scopes: list[str] | None = None) -> ClientConfig:
        """Load a Google client secrets file.

        Args:
            path: credentials.json downloaded from Google Cloud Console.
            scopes: Scope names or URLs. Defaults to read-only calendar access.

        Raises:
            CredentialsNotFoundError: If the file does not exist.
            ConfigInvalid: If the file is not a valid client secrets file.
        """
        path = Path(path).expanduser()
        if not path.exists():
            raise CredentialsNotFoundError(str(path))

        try:
            with open(path) as f:
                creds = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigInvalid(f"Unable to read client secret file '{path}': {e}") from e

        # Handle both web and installed app credential formats
        if not isinstance(creds, dict):
            app_creds = None
        else:
            app_creds = creds.get("installed") or creds.get("web")
        if not isinstance(app_creds, dict):
            raise ConfigInvalid(
                f"Invalid credentials file '{path}'. Expected 'installed' or 'web' key."
            )

        try:
            resolved = resolve_scopes(scopes or DEFAULT_SCOPES)
        except ValueError as e:
            raise ConfigInvalid(str(e)) from e

        return cls(
            client_id=app_creds.get("client_id", ""),
            client_secret=app_creds.get("client_secret"),
            auth_uri=app_creds.get("auth_uri") or DEFAULT_AUTH_URI,
            token_uri=app_creds.get("token_uri") or DEFAULT_TOKEN_URI,
            scopes=resolved,
        )

    def validate(self) -> None:
        """Raise ConfigInvalid unless the configuration can drive an OAuth flow."""
        missing = [
            name
            for name, value in (
                ("client_id", self.client_id),
                ("auth_uri", self.auth_uri),
                ("token_uri", self.token_uri),
                ("redirect_uri", self.redirect_uri),
            )
            if not value
        ]
        if not self.scopes:
            missing.append("scopes")
        if missing:
            raise ConfigInvalid(f"OAuth client configuration is missing: {', '.join(missing)}")


# Auto-load .env on import
_loaded = _load_env_file(ENV_FILE)

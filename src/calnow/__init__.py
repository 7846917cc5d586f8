"""calnow - show the Google Calendar events of the current hour.

The interesting part is the token cache in :mod:`calnow.auth`, which keeps
an OAuth token on disk, refreshes it before it runs out, and falls back to
the console authorization flow when it has to.
"""

from calnow.auth import Credential, TokenCacheManager, TokenStore
from calnow.config import ClientConfig
from calnow.exceptions import (
    CalnowError,
    ConfigInvalid,
    CredentialUnavailable,
    GrantExchangeFailed,
    PersistFailed,
    RefreshFailed,
)

__version__ = "0.1.0"

__all__ = [
    "ClientConfig",
    "Credential",
    "TokenCacheManager",
    "TokenStore",
    "CalnowError",
    "ConfigInvalid",
    "CredentialUnavailable",
    "RefreshFailed",
    "GrantExchangeFailed",
    "PersistFailed",
]

"""OAuth token cache and service account authentication."""

from calnow.auth.credential import Credential
from calnow.auth.oauth import TokenCacheManager
from calnow.auth.service_account import ServiceAccountAuth, is_service_account_file
from calnow.auth.store import TokenStore

__all__ = [
    "Credential",
    "TokenCacheManager",
    "TokenStore",
    "ServiceAccountAuth",
    "is_service_account_file",
]

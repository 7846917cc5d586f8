"""calnow exceptions."""

from __future__ import annotations


class CalnowError(Exception):
    """Base exception for calnow errors."""

    pass


class TokenCacheError(CalnowError):
    """Base exception for credential acquisition errors."""

    pass


class ConfigInvalid(TokenCacheError):
    """Raised when the OAuth client configuration is missing required fields."""

    pass


class CredentialsNotFoundError(ConfigInvalid):
    """Raised when the OAuth client credentials file is not found."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"Credentials file not found at {path}. "
            "Please download OAuth credentials from Google Cloud Console."
        )


class CredentialUnavailable(TokenCacheError):
    """Raised when no usable credential exists and no interactive grant may run."""

    pass


class ExchangeError(TokenCacheError):
    """Raised when a token endpoint exchange fails."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status_code: int | None = None,
    ):
        self.endpoint = endpoint
        self.status_code = status_code
        details = []
        if endpoint:
            details.append(f"endpoint={endpoint}")
        if status_code is not None:
            details.append(f"status={status_code}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class RefreshFailed(ExchangeError):
    """Raised when the refresh token exchange is rejected or unreachable."""

    pass


class GrantExchangeFailed(ExchangeError):
    """Raised when the authorization code cannot be exchanged for a token."""

    pass


class PersistFailed(TokenCacheError):
    """Raised when the token store cannot be written."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Could not save token to {path}: {reason}")


class StoreCorrupt(TokenCacheError):
    """Raised internally when the token store holds malformed data."""

    pass

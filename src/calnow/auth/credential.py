"""OAuth credential value type."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

# Go's zero time.Time, written by older token files for "no expiry"
_ZERO_TIME_PREFIX = "0001-01-01T00:00:00"
_FRACTION_RE = re.compile(r"\.(\d+)")


def _normalize_fraction(match: re.Match) -> str:
    # fromisoformat wants exactly six digits on older interpreters
    return "." + (match.group(1) + "000000")[:6]


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _from_epoch(seconds: float) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Expiry out of range: {seconds!r}") from e


def parse_expiry(value: Any) -> datetime | None:
    """Parse a persisted expiry into an aware UTC datetime.

    Accepts RFC 3339 strings (including nanosecond fractions and a trailing
    ``Z``) and epoch seconds. Returns None for empty values and the zero time.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp.
    """
    if value is None or value == "":
        return None

    if isinstance(value, bool):
        raise ValueError(f"Invalid expiry: {value!r}")

    if isinstance(value, (int, float)):
        return _from_epoch(value)

    if not isinstance(value, str):
        raise ValueError(f"Invalid expiry: {value!r}")

    if value.startswith(_ZERO_TIME_PREFIX):
        return None

    text = _FRACTION_RE.sub(_normalize_fraction, value.replace("Z", "+00:00"), count=1)
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_expiry(value: datetime | None) -> str | None:
    """Serialize an expiry as RFC 3339 in UTC."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Credential:
    """An access/refresh token bundle and its expiry metadata.

    Credentials are never mutated; a refresh produces a new value.
    """

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None
    token_type: str = "Bearer"
    scopes: tuple[str, ...] = ()

    def __post_init__(self):
        if self.expiry is not None:
            expiry = self.expiry
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            object.__setattr__(self, "expiry", expiry.astimezone(timezone.utc))
        object.__setattr__(self, "scopes", tuple(self.scopes))

    @property
    def is_refreshable(self) -> bool:
        return bool(self.refresh_token)

    def expires_in(self, now: datetime) -> timedelta | None:
        """Time left before expiry, or None when the expiry is unknown."""
        if self.expiry is None:
            return None
        return self.expiry - now

    def is_valid(self, now: datetime, margin: timedelta) -> bool:
        """True when the token outlives ``now`` by more than ``margin``."""
        remaining = self.expires_in(now)
        return remaining is not None and remaining > margin

    def is_stale(self, now: datetime, margin: timedelta) -> bool:
        return not self.is_valid(now, margin)

    def is_expired(self, now: datetime) -> bool:
        return self.expiry is None or now >= self.expiry

    def has_scopes(self, required: tuple[str, ...] | list[str]) -> bool:
        return set(required).issubset(self.scopes)

    def replace(self, **changes: Any) -> Credential:
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_token_response(
        cls,
        token: dict[str, Any],
        now: datetime,
        previous: Credential | None = None,
    ) -> Credential:
        """Build a credential from a token endpoint response.

        Args:
            token: Parsed response (e.g. an Authlib ``OAuth2Token``).
            now: Time the response was received, for ``expires_in``.
            previous: Credential being refreshed. Its refresh token and scopes
                are kept when the response omits them.

        Raises:
            ValueError: If the response has no access token or no expiry.
        """
        access_token = token.get("access_token")
        if not access_token:
            raise ValueError("Token response has no access_token")

        expires_at = token.get("expires_at")
        expires_in = token.get("expires_in")
        if expires_at is not None:
            expiry = _from_epoch(float(expires_at))
        elif expires_in is not None:
            try:
                expiry = now + timedelta(seconds=float(expires_in))
            except OverflowError as e:
                raise ValueError(f"Invalid expires_in: {expires_in!r}") from e
        else:
            raise ValueError("Token response has no expiry information")

        refresh_token = token.get("refresh_token")
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token

        scope = token.get("scope")
        if isinstance(scope, str):
            scopes = tuple(scope.split())
        elif scope:
            scopes = tuple(scope)
        elif previous is not None:
            scopes = previous.scopes
        else:
            scopes = ()

        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expiry=expiry,
            token_type=token.get("token_type") or "Bearer",
            scopes=scopes,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted token file layout."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "expiry": format_expiry(self.expiry),
            "scope": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        """Deserialize a persisted token record.

        Both this package's layout and the google-auth ``authorized_user``
        layout (``token``/``scopes``) are accepted.

        Raises:
            ValueError: If the record has no access token or a bad expiry.
        """
        access_token = data.get("access_token") or data.get("token")
        if not access_token or not isinstance(access_token, str):
            raise ValueError("Token record has no access token")

        scope = data.get("scope", data.get("scopes"))
        if isinstance(scope, str):
            scopes = tuple(scope.split())
        else:
            scopes = tuple(scope or ())

        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            expiry=parse_expiry(data.get("expiry")),
            token_type=data.get("token_type") or data.get("type") or "Bearer",
            scopes=scopes,
        )

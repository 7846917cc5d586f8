"""Tests for the credential value type and on-disk token store."""

import json
import os
import stat
from datetime import datetime, timedelta, timezone

import pytest

from calnow.auth import Credential, TokenStore
from calnow.auth.credential import format_expiry, parse_expiry
from calnow.exceptions import PersistFailed

NOW = datetime(2026, 1, 25, 10, 0, tzinfo=timezone.utc)
MARGIN = timedelta(minutes=5)


class TestCredential:
    """Validity rules and token response parsing."""

    def test_valid_outside_margin(self):
        """Should be valid when expiry is beyond the margin."""
        credential = Credential(access_token="a", expiry=NOW + timedelta(minutes=10))
        assert credential.is_valid(NOW, MARGIN)
        assert not credential.is_stale(NOW, MARGIN)

    def test_stale_inside_margin(self):
        """Should be stale but not expired inside the margin."""
        credential = Credential(access_token="a", expiry=NOW + timedelta(minutes=1))
        assert credential.is_stale(NOW, MARGIN)
        assert not credential.is_expired(NOW)

    def test_unknown_expiry_is_stale(self):
        """Should treat a token without expiry as stale and expired."""
        credential = Credential(access_token="a")
        assert credential.is_stale(NOW, MARGIN)
        assert credential.is_expired(NOW)

    def test_refreshable(self):
        """Should be refreshable only with a refresh token."""
        assert Credential(access_token="a", refresh_token="r").is_refreshable
        assert not Credential(access_token="a").is_refreshable
        assert not Credential(access_token="a", refresh_token="").is_refreshable

    def test_expiry_normalized_to_utc(self):
        """Should convert offsets and naive datetimes to UTC."""
        plus_two = timezone(timedelta(hours=2))
        credential = Credential(access_token="a", expiry=datetime(2026, 1, 25, 12, 0, tzinfo=plus_two))
        assert credential.expiry == NOW
        assert credential.expiry.tzinfo == timezone.utc

        naive = Credential(access_token="a", expiry=datetime(2026, 1, 25, 10, 0))
        assert naive.expiry == NOW

    def test_immutable(self):
        """Should only change by replacement."""
        credential = Credential(access_token="a")
        with pytest.raises(AttributeError):
            credential.access_token = "b"
        assert credential.replace(access_token="b").access_token == "b"
        assert credential.access_token == "a"

    def test_from_token_response_expires_at(self):
        """Should prefer the absolute expires_at timestamp."""
        token = {"access_token": "a", "expires_at": NOW.timestamp() + 60, "expires_in": 9999}
        credential = Credential.from_token_response(token, NOW)
        assert credential.expiry == NOW + timedelta(seconds=60)

    def test_from_token_response_carries_over(self):
        """Should keep refresh token and scopes from the previous credential."""
        previous = Credential(access_token="old", refresh_token="r", scopes=("s1", "s2"))
        credential = Credential.from_token_response(
            {"access_token": "new", "expires_in": 3600}, NOW, previous=previous
        )
        assert credential.refresh_token == "r"
        assert credential.scopes == ("s1", "s2")
        assert credential.token_type == "Bearer"

    def test_from_token_response_scope_string(self):
        """Should split a space separated scope."""
        credential = Credential.from_token_response(
            {"access_token": "a", "expires_in": 60, "scope": "s1 s2"}, NOW
        )
        assert credential.scopes == ("s1", "s2")

    @pytest.mark.parametrize(
        "token",
        [
            {"expires_in": 3600},
            {"access_token": "", "expires_in": 3600},
            {"access_token": "a"},
            {"access_token": "a", "expires_in": 1e20},
            {"access_token": "a", "expires_at": 1e20},
        ],
    )
    def test_from_token_response_malformed(self, token):
        """Should reject responses without access token or expiry."""
        with pytest.raises(ValueError):
            Credential.from_token_response(token, NOW)


class TestExpiryParsing:
    """Timestamp formats found in token files."""

    def test_rfc3339_z(self):
        """Should parse a UTC timestamp with Z suffix."""
        assert parse_expiry("2026-01-25T10:00:00Z") == NOW

    def test_nanoseconds_and_offset(self):
        """Should truncate nanosecond fractions and honor offsets."""
        parsed = parse_expiry("2026-01-25T11:00:00.123456789+01:00")
        assert parsed == NOW + timedelta(microseconds=123456)

    def test_short_fraction(self):
        """Should accept fractions shorter than microseconds."""
        assert parse_expiry("2026-01-25T10:00:00.5Z") == NOW + timedelta(milliseconds=500)

    def test_zero_time(self):
        """Should read the zero time as unknown expiry."""
        assert parse_expiry("0001-01-01T00:00:00Z") is None

    def test_epoch_seconds(self):
        """Should accept epoch seconds."""
        assert parse_expiry(NOW.timestamp()) == NOW

    def test_garbage(self):
        """Should raise ValueError on unparseable input."""
        with pytest.raises(ValueError):
            parse_expiry("next tuesday")

    @pytest.mark.parametrize("value", [1e20, -1e20, 1e300])
    def test_epoch_out_of_range(self, value):
        """Should raise ValueError for epoch seconds no datetime can hold."""
        with pytest.raises(ValueError):
            parse_expiry(value)

    def test_format(self):
        """Should format as RFC 3339 UTC with Z suffix."""
        assert format_expiry(NOW) == "2026-01-25T10:00:00Z"
        assert format_expiry(None) is None


class TestTokenStore:
    """Loading and persisting the token file."""

    @pytest.fixture
    def store(self, tmp_path):
        return TokenStore(tmp_path / "token.json")

    @pytest.fixture
    def credential(self):
        return Credential(
            access_token="access",
            refresh_token="refresh",
            expiry=NOW + timedelta(hours=1, microseconds=42),
            token_type="Bearer",
            scopes=("https://www.googleapis.com/auth/calendar.readonly",),
        )

    def test_persist_then_load(self, store, credential):
        """Should load a credential equal in all fields."""
        store.persist(credential)
        assert store.load() == credential

    def test_persisted_field_names(self, store, credential):
        """Should write stable field names."""
        store.persist(credential)
        data = json.loads(store.path.read_text())
        assert set(data) == {"access_token", "token_type", "refresh_token", "expiry", "scope"}
        assert data["expiry"] == "2026-01-25T11:00:00.000042Z"

    def test_missing_file(self, store):
        """Should return None when the file does not exist."""
        assert store.load() is None

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            "[]",
            '{"refresh_token": "r"}',
            '{"access_token": "a", "expiry": "soon"}',
            '{"access_token": "a", "expiry": 1e20}',
            '{"access_token": "a", "expiry": -1e20}',
            '{"access_token": "a", "expiry": 1e300}',
            "",
        ],
    )
    def test_corrupt_file(self, store, content):
        """Should return None for malformed content."""
        store.path.write_text(content)
        assert store.load() is None

    def test_loads_go_token_file(self, store):
        """Should read the token file written by the earlier Go tool."""
        store.path.write_text(
            json.dumps(
                {
                    "access_token": "ya29.go",
                    "token_type": "Bearer",
                    "refresh_token": "1//go",
                    "expiry": "2026-01-25T11:00:00.123456789+01:00",
                }
            )
        )
        credential = store.load()
        assert credential.access_token == "ya29.go"
        assert credential.refresh_token == "1//go"
        assert credential.expiry == NOW + timedelta(microseconds=123456)
        assert credential.scopes == ()

    def test_loads_google_auth_token_file(self, store):
        """Should read the google-auth authorized user layout."""
        store.path.write_text(
            json.dumps(
                {
                    "token": "ya29.google",
                    "refresh_token": "1//google",
                    "scopes": ["https://www.googleapis.com/auth/calendar"],
                    "expiry": "2026-01-25T10:00:00Z",
                }
            )
        )
        credential = store.load()
        assert credential.access_token == "ya29.google"
        assert credential.scopes == ("https://www.googleapis.com/auth/calendar",)
        assert credential.expiry == NOW

    def test_persist_replaces_atomically(self, store, credential):
        """Should leave only the token file behind, readable by owner only."""
        store.path.write_text("old")
        store.persist(credential)

        assert [p.name for p in store.path.parent.iterdir()] == ["token.json"]
        mode = stat.S_IMODE(os.stat(store.path).st_mode)
        assert mode == 0o600

    def test_persist_creates_directory(self, tmp_path, credential):
        """Should create missing parent directories."""
        store = TokenStore(tmp_path / "nested" / "dir" / "token.json")
        store.persist(credential)
        assert store.load() == credential

    def test_persist_failure(self, tmp_path, credential):
        """Should raise PersistFailed when the directory cannot be created."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = TokenStore(blocker / "token.json")

        with pytest.raises(PersistFailed):
            store.persist(credential)

    def test_persist_failure_keeps_previous_token(self, store, credential, monkeypatch):
        """Should not corrupt the existing file when the write fails."""
        store.persist(credential)

        def fail(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("calnow.auth.store.os.replace", fail)
        with pytest.raises(PersistFailed, match="disk full"):
            store.persist(credential.replace(access_token="new"))

        assert store.load() == credential
        assert [p.name for p in store.path.parent.iterdir()] == ["token.json"]

    def test_clear(self, store, credential):
        """Should delete the token file."""
        store.persist(credential)
        assert store.clear() is True
        assert not store.exists()
        assert store.clear() is False

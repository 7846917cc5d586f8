"""On-disk token storage.

The token file is a single JSON record::

    {
      "access_token": "...",
      "token_type": "Bearer",
      "refresh_token": "...",
      "expiry": "2026-01-25T10:00:00Z",
      "scope": ["https://www.googleapis.com/auth/calendar.readonly"]
    }

Writes go to a temporary file in the same directory which then replaces the
target, so a crash never leaves a half-written token behind. Concurrent
processes sharing a token file are last-writer-wins; there is no lock.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from calnow.auth.credential import Credential
from calnow.exceptions import PersistFailed, StoreCorrupt

logger = logging.getLogger(__name__)


class TokenStore:
    """Loads and persists a single Credential at ``path``."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Credential | None:
        """Load the stored credential.

        Returns:
            The Credential, or None when the file is missing or malformed.
        """
        if not self.path.exists():
            logger.info(f"No token file at {self.path}")
            return None

        try:
            return self._read()
        except StoreCorrupt as e:
            logger.warning(f"Ignoring unusable token file {self.path}: {e}")
            return None

    def _read(self) -> Credential:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreCorrupt(str(e)) from e

        if not isinstance(data, dict):
            raise StoreCorrupt("token file does not contain a JSON object")

        try:
            credential = Credential.from_dict(data)
        except (TypeError, ValueError, OverflowError) as e:
            raise StoreCorrupt(str(e)) from e

        logger.info(f"Loaded token from {self.path}")
        return credential

    def persist(self, credential: Credential) -> None:
        """Atomically write ``credential`` to the token file.

        Raises:
            PersistFailed: If the file cannot be written.
        """
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(credential.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise PersistFailed(str(self.path), str(e)) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.info(f"Token saved to {self.path}")

    def clear(self) -> bool:
        """Delete the token file.

        Returns:
            True if a file was removed.
        """
        if not self.path.exists():
            return False
        self.path.unlink()
        logger.info(f"Removed token file {self.path}")
        return True

"""Token record and single-file persistence for the Fitbit OAuth token set.

The file is a flat JSON object::

    {
      "access_token": "...",
      "refresh_token": "...",
      "expires_at": "2026-10-16T12:00:00+00:00",
      "scope": "activity sleep weight",
      "token_type": "Bearer",
      "user_id": "ABC123"
    }

``expires_at`` is written as ISO-8601; epoch seconds are accepted on load.
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog

from modules.fitbit.exceptions import TokenFileCorruptError, TokenStoreError

logger = structlog.get_logger()


def _parse_expires_at(value: object) -> datetime:
    if isinstance(value, bool):
        raise TypeError("expires_at must be a timestamp")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise TypeError(f"expires_at has unsupported type {type(value).__name__}")


def parse_scope(value: str | None) -> frozenset[str]:
    """Split a space-separated OAuth scope string."""
    if not value:
        return frozenset()
    if not isinstance(value, str):
        raise TypeError(f"scope must be a string, got {type(value).__name__}")
    return frozenset(value.split())


@dataclass(frozen=True)
class TokenRecord:
    """The OAuth token set. Replaced wholesale, never patched."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    scope: frozenset[str] = field(default_factory=frozenset)
    token_type: str = "Bearer"
    user_id: str | None = None

    def __post_init__(self) -> None:
        if not self.access_token:
            raise ValueError("access_token cannot be empty")
        if self.expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")

    @classmethod
    def issued_now(
        cls,
        access_token: str,
        refresh_token: str,
        expires_in: int | float,
        scope: frozenset[str] = frozenset(),
        user_id: str | None = None,
    ) -> TokenRecord:
        """Build a record whose expiry is the issue time plus the reported lifetime."""
        issued_at = datetime.now(timezone.utc)
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=issued_at + timedelta(seconds=expires_in),
            scope=scope,
            user_id=user_id,
        )

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at

    def expires_within(self, seconds: int | float) -> bool:
        """True if the access token expires within ``seconds`` from now."""
        return datetime.now(timezone.utc) + timedelta(seconds=seconds) >= self.expires_at

    def to_dict(self) -> dict:
        data = {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "scope": " ".join(sorted(self.scope)),
            "token_type": self.token_type,
        }
        if self.user_id is not None:
            data["user_id"] = self.user_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> TokenRecord:
        """Build a record from its JSON form.

        Raises:
            KeyError: If a required field is missing.
            TypeError, ValueError: If a field is malformed.
        """
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=_parse_expires_at(data["expires_at"]),
            scope=parse_scope(data.get("scope")),
            token_type=data.get("token_type", "Bearer"),
            user_id=data.get("user_id"),
        )


class TokenStore:
    """Single-record JSON file store for the current token set."""

    def __init__(self, token_file: str | Path) -> None:
        self.token_file = Path(token_file).expanduser().resolve()

    async def save(self, record: TokenRecord) -> None:
        """Atomically replace the token file with ``record``.

        Raises:
            TokenStoreError: If the file cannot be written.
        """
        await asyncio.to_thread(self._write, record.to_dict())
        logger.info("fitbit_tokens_saved", path=str(self.token_file))

    async def load(self) -> TokenRecord | None:
        """Return the persisted record, or None if no token file exists.

        Raises:
            TokenFileCorruptError: If the file exists but cannot be parsed.
            TokenStoreError: If the file exists but cannot be read.
        """
        return await asyncio.to_thread(self._read)

    async def delete(self) -> bool:
        """Remove the token file. Returns False if there was none."""
        return await asyncio.to_thread(self._unlink)

    def exists(self) -> bool:
        return self.token_file.exists()

    def _write(self, data: dict) -> None:
        tmp_path = self.token_file.with_name(f".{self.token_file.name}.tmp")
        try:
            self.token_file.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.token_file)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise TokenStoreError(f"Failed to save tokens to {self.token_file}: {e}") from e

    def _read(self) -> TokenRecord | None:
        if not self.token_file.exists():
            logger.debug("fitbit_token_file_missing", path=str(self.token_file))
            return None

        try:
            with open(self.token_file, "rb") as f:
                raw = f.read()
        except OSError as e:
            raise TokenStoreError(f"Could not read {self.token_file}: {e}") from e

        try:
            data = json.loads(raw.decode("utf-8"))
            if not isinstance(data, dict):
                raise TypeError("token file must hold a JSON object")
            return TokenRecord.from_dict(data)
        except (KeyError, OSError, OverflowError, TypeError, ValueError) as e:
            raise TokenFileCorruptError(f"Invalid token file at {self.token_file}: {e}") from e

    def _unlink(self) -> bool:
        try:
            self.token_file.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise TokenStoreError(f"Failed to delete {self.token_file}: {e}") from e
        logger.info("fitbit_token_file_deleted", path=str(self.token_file))
        return True

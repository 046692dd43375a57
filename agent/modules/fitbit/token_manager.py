"""Token lifecycle management for the Fitbit module.

The manager owns the single in-memory token record. It is the context object
handed to the request client and the callback receiver; nothing else holds
the token.

Mutation happens from two places only: the startup refresh in
:meth:`TokenManager.initialize` and the callback receiver's completion step
(plus the optional refresh-on-read, serialized by ``_refresh_lock``). Every
mutation replaces the record wholesale and schedules a persist that never
blocks or fails the caller.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog

from modules.fitbit.exceptions import TokenExchangeError, TokenStoreError
from modules.fitbit.oauth import FitbitOAuthClient
from modules.fitbit.token_store import TokenRecord, TokenStore

logger = structlog.get_logger()


class TokenManager:
    """Holds the current Fitbit token set and keeps it fresh."""

    def __init__(
        self,
        store: TokenStore,
        oauth: FitbitOAuthClient,
        *,
        refresh_on_read: bool = True,
        refresh_margin_seconds: int = 300,
    ) -> None:
        self.store = store
        self.oauth = oauth
        self.refresh_on_read = refresh_on_read
        self.refresh_margin_seconds = refresh_margin_seconds
        self._record: TokenRecord | None = None
        self._refresh_lock = asyncio.Lock()
        self._pending_writes: set[asyncio.Task] = set()

    @property
    def record(self) -> TokenRecord | None:
        return self._record

    async def initialize(self) -> None:
        """Load the persisted token, refreshing it once if it has expired.

        Never raises: storage and refresh failures leave the manager
        unauthenticated.
        """
        try:
            record = await self.store.load()
        except TokenStoreError as e:
            logger.warning("fitbit_token_load_failed", error=str(e))
            return

        if record is None:
            logger.info("fitbit_no_persisted_token")
            return

        if not record.is_expired:
            self._record = record
            logger.info("fitbit_token_loaded", expires_at=record.expires_at.isoformat())
            return

        logger.info("fitbit_persisted_token_expired", expires_at=record.expires_at.isoformat())
        try:
            refreshed = await self.oauth.refresh(record)
        except TokenExchangeError as e:
            logger.warning(
                "fitbit_startup_refresh_failed",
                status=e.status_code,
                error=str(e),
                hint="Token discarded; re-authorization required",
            )
            return

        self.adopt(refreshed)
        await self.wait_for_persistence()

    def get_access_token(self) -> str | None:
        """Return the in-memory access token. No I/O."""
        if self._record is None:
            return None
        return self._record.access_token

    async def get_fresh_access_token(self) -> str | None:
        """Return the access token, refreshing first if it is about to expire.

        Concurrent callers share one refresh. If the refresh fails and the
        token has already expired, it is dropped rather than reused.
        """
        if not self._needs_refresh():
            return self.get_access_token()

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            if not self._needs_refresh():
                return self.get_access_token()

            record = self._record
            try:
                refreshed = await self.oauth.refresh(record)
            except TokenExchangeError as e:
                logger.warning("fitbit_refresh_on_read_failed", status=e.status_code, error=str(e))
                if record.is_expired and self._record is record:
                    self.invalidate("refresh_failed")
                return self.get_access_token()

            if self._record is not record:
                # A completed authorization replaced the token mid-refresh
                logger.info("fitbit_refresh_result_discarded")
                return self.get_access_token()
            self.adopt(refreshed)

        return self.get_access_token()

    def _needs_refresh(self) -> bool:
        return (
            self.refresh_on_read
            and self._record is not None
            and self._record.expires_within(self.refresh_margin_seconds)
        )

    def adopt(self, record: TokenRecord) -> None:
        """Replace the held record and persist it in the background."""
        self._record = record
        logger.info("fitbit_token_adopted", expires_at=record.expires_at.isoformat())

        task = asyncio.create_task(self._persist(record))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _persist(self, record: TokenRecord) -> None:
        try:
            await self.store.save(record)
        except TokenStoreError as e:
            # The in-memory token is still usable for this process
            logger.error("fitbit_token_persist_failed", error=str(e))

    async def wait_for_persistence(self) -> None:
        """Wait for any scheduled token writes to finish."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    def invalidate(self, reason: str = "unauthorized") -> None:
        """Forget the in-memory token; the file on disk is left alone."""
        if self._record is not None:
            logger.warning("fitbit_token_invalidated", reason=reason)
        self._record = None

    async def revoke(self) -> None:
        """Local revocation: clear memory and delete the token file."""
        self._record = None
        await self.wait_for_persistence()
        await self.store.delete()
        logger.info("fitbit_tokens_revoked_locally")

    def status(self) -> dict:
        """Token status for diagnostics."""
        record = self._record
        if record is None:
            return {"authorized": False, "message": "No Fitbit token held"}

        expires_in = (record.expires_at - datetime.now(timezone.utc)).total_seconds()
        return {
            "authorized": True,
            "expired": record.is_expired,
            "expires_at": record.expires_at.isoformat(),
            "expires_in_seconds": max(0, int(expires_in)),
            "scope": sorted(record.scope),
        }

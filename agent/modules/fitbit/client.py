"""Authenticated request helper for the Fitbit Web API."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import httpx
import structlog

from modules.fitbit.exceptions import FitbitAPIError, NotAuthenticatedError

logger = structlog.get_logger()

USER_AGENT = "agent-fitbit-module/1.0"
FITBIT_API_BASE = "https://api.fitbit.com/1"
FITBIT_SLEEP_API_BASE = "https://api.fitbit.com/1.2"

TokenAccessor = Callable[[], Awaitable[str | None]]


class FitbitClient:
    """Issues GET requests against ``{api_base}/user/-/{endpoint}``.

    The token accessor is awaited on every call; when it yields nothing the
    request is refused without touching the network.
    """

    def __init__(
        self,
        token_accessor: TokenAccessor,
        *,
        api_base: str = FITBIT_API_BASE,
        sleep_api_base: str = FITBIT_SLEEP_API_BASE,
        on_unauthorized: Callable[[], None] | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._token_accessor = token_accessor
        self.api_base = api_base.rstrip("/")
        self.sleep_api_base = sleep_api_base.rstrip("/")
        self._on_unauthorized = on_unauthorized
        self.timeout = timeout

    async def get(self, endpoint: str, api_base: str | None = None) -> dict:
        """Fetch and decode a JSON resource for the current user.

        Returns an empty dict for ``204 No Content``.

        Raises:
            NotAuthenticatedError: No access token is available.
            FitbitAPIError: Non-2xx status, network failure, or a non-JSON body.
        """
        token = await self._token_accessor()
        if not token:
            raise NotAuthenticatedError("No Fitbit access token available. Authorize first.")

        base = (api_base or self.api_base).rstrip("/")
        url = f"{base}/user/-/{endpoint.lstrip('/')}"
        headers = {
            "User-Agent": USER_AGENT,
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

        logger.debug("fitbit_api_request", url=url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url, headers=headers)
        except httpx.RequestError as e:
            logger.error("fitbit_api_request_error", url=url, error=str(e))
            raise FitbitAPIError(f"Failed to connect to Fitbit API: {e}") from e

        if resp.status_code == 401:
            logger.warning(
                "fitbit_api_unauthorized",
                url=url,
                hint="Access token expired or revoked; re-authorization needed",
            )
            if self._on_unauthorized is not None:
                self._on_unauthorized()

        if not resp.is_success:
            logger.error(
                "fitbit_api_http_error",
                url=url,
                status=resp.status_code,
                body=resp.text[:500],
            )
            raise FitbitAPIError(
                f"Fitbit API error: {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )

        if resp.status_code == 204:
            return {}

        try:
            return resp.json()
        except ValueError as e:
            logger.error("fitbit_api_invalid_json", url=url, error=str(e))
            raise FitbitAPIError(
                "Fitbit API returned a non-JSON body", status_code=resp.status_code
            ) from e

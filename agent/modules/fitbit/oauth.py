"""Fitbit OAuth2 token endpoint client (authorization code + refresh grants)."""

from __future__ import annotations

import base64
from urllib.parse import urlencode

import httpx
import structlog

from modules.fitbit.exceptions import ConfigurationError, TokenExchangeError
from modules.fitbit.token_store import TokenRecord, parse_scope

logger = structlog.get_logger()

DEFAULT_AUTHORIZE_URL = "https://www.fitbit.com/oauth2/authorize"
DEFAULT_TOKEN_URL = "https://api.fitbit.com/oauth2/token"
DEFAULT_SCOPES = ("activity", "heartrate", "profile", "sleep", "weight")


class FitbitOAuthClient:
    """Exchanges authorization codes and refresh tokens for token records.

    Client credentials go in a Basic ``Authorization`` header; grant
    parameters go in a form-encoded body.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        authorize_url: str = DEFAULT_AUTHORIZE_URL,
        token_url: str = DEFAULT_TOKEN_URL,
        scopes: list[str] | tuple[str, ...] = DEFAULT_SCOPES,
        timeout: float = 15.0,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.scopes = list(scopes)
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def build_authorize_url(self, redirect_uri: str) -> str:
        """Build the provider consent URL for the authorization code flow."""
        if not self.client_id:
            raise ConfigurationError("FITBIT_CLIENT_ID is not configured")
        params = urlencode(
            {
                "response_type": "code",
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "scope": " ".join(self.scopes),
            }
        )
        return f"{self.authorize_url}?{params}"

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenRecord:
        """Exchange an authorization code for a fresh token record.

        Raises:
            TokenExchangeError: On a non-200 response, a network failure, or a
                malformed token payload.
        """
        logger.info("fitbit_code_exchange_started")
        return await self._request_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self.client_id,
            }
        )

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        """Exchange the record's refresh token for a renewed token record.

        Raises:
            TokenExchangeError: Same conditions as :meth:`exchange_code`.
        """
        logger.info("fitbit_token_refresh_started")
        return await self._request_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": record.refresh_token,
            },
            previous=record,
        )

    def _basic_auth_header(self) -> str:
        credentials = f"{self.client_id}:{self.client_secret}".encode()
        return f"Basic {base64.b64encode(credentials).decode()}"

    async def _request_token(
        self, grant: dict[str, str], previous: TokenRecord | None = None
    ) -> TokenRecord:
        grant_type = grant["grant_type"]
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.token_url,
                    data=grant,
                    headers={
                        "Authorization": self._basic_auth_header(),
                        "Content-Type": "application/x-www-form-urlencoded",
                        "Accept": "application/json",
                    },
                )
        except httpx.RequestError as e:
            logger.error("fitbit_token_request_error", grant_type=grant_type, error=str(e))
            raise TokenExchangeError(f"Network error calling Fitbit token endpoint: {e}") from e

        if resp.status_code != 200:
            logger.warning(
                "fitbit_token_request_failed",
                grant_type=grant_type,
                status=resp.status_code,
                body=resp.text[:500],
            )
            raise TokenExchangeError(
                f"Fitbit token endpoint returned {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()
            # Fitbit rotates refresh tokens, but keep the old one if none comes back
            refresh_token = data.get("refresh_token") or (
                previous.refresh_token if previous else None
            )
            if not refresh_token:
                raise KeyError("refresh_token")
            scope = parse_scope(data["scope"]) if "scope" in data else (
                previous.scope if previous else frozenset()
            )
            record = TokenRecord.issued_now(
                access_token=data["access_token"],
                refresh_token=refresh_token,
                expires_in=int(data["expires_in"]),
                scope=scope,
                user_id=data.get("user_id") or (previous.user_id if previous else None),
            )
        except (AttributeError, KeyError, OverflowError, TypeError, ValueError) as e:
            logger.error("fitbit_token_response_invalid", grant_type=grant_type, error=str(e))
            raise TokenExchangeError(
                f"Invalid response from Fitbit token endpoint: {e}",
                status_code=resp.status_code,
                body=resp.text,
            ) from e

        logger.info(
            "fitbit_token_issued",
            grant_type=grant_type,
            expires_at=record.expires_at.isoformat(),
        )
        return record

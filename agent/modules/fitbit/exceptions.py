"""Exception hierarchy for the Fitbit module."""

from __future__ import annotations


class FitbitError(Exception):
    """Base exception for all Fitbit module errors."""


class ConfigurationError(FitbitError):
    """Fitbit client credentials are missing or invalid."""


class TokenStoreError(FitbitError):
    """Token file could not be read or written."""


class TokenFileCorruptError(TokenStoreError):
    """Token file exists but does not hold a valid token record."""


class TokenExchangeError(FitbitError):
    """The OAuth token endpoint rejected a grant or could not be reached.

    ``status_code`` and ``body`` are set for HTTP failures; network failures
    leave them as ``None`` and chain the original exception.
    """

    def __init__(
        self, message: str, status_code: int | None = None, body: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NotAuthenticatedError(FitbitError):
    """No access token is available; authorization has not completed."""


class FitbitAPIError(FitbitError):
    """The Fitbit data API returned a non-success status or was unreachable."""

    def __init__(
        self, message: str, status_code: int | None = None, body: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class FitbitToolError(FitbitError):
    """A tool call failed; the message is shown to the caller as-is."""

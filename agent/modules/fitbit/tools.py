"""Fitbit module tool implementations.

Each data tool validates its arguments, makes one call through
:class:`FitbitClient`, and returns either the raw JSON (pretty-printed) or a
"no data" message. Failures are raised as :class:`FitbitToolError` with text
meant for the agent.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date

import structlog

from modules.fitbit.callback_server import AuthorizationCallbackServer
from modules.fitbit.client import FitbitClient
from modules.fitbit.exceptions import (
    FitbitAPIError,
    FitbitToolError,
    NotAuthenticatedError,
)
from modules.fitbit.token_manager import TokenManager

logger = structlog.get_logger()

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
WEIGHT_PERIODS = ("7", "30", "90")
MAX_SLEEP_RANGE_DAYS = 100
MAX_EXERCISE_LIMIT = 100


@dataclass
class ToolOutput:
    """Text handed back to the agent; ``empty`` marks a well-formed "no data" answer."""

    text: str
    empty: bool = False


def _parse_date(value: str | None, name: str) -> date:
    """Parse a YYYY-MM-DD string, raising a caller-facing error."""
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise FitbitToolError(f"'{name}' must be a date in YYYY-MM-DD format, got {value!r}.")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise FitbitToolError(f"'{name}' is not a valid calendar date: {value!r}.") from None


def _pretty(data: dict) -> str:
    return json.dumps(data, indent=2)


class FitbitTools:
    """Tool implementations backed by the Fitbit Web API."""

    def __init__(
        self,
        client: FitbitClient,
        token_manager: TokenManager,
        auth_server: AuthorizationCallbackServer,
    ) -> None:
        self.client = client
        self.token_manager = token_manager
        self.auth_server = auth_server

    def _unauthenticated_message(self) -> str:
        return (
            "Fitbit is not authorized yet. Complete the authorization flow at "
            f"{self.auth_server.auth_entry_url} (or call fitbit.start_authorization) "
            "and try again."
        )

    async def _fetch(self, endpoint: str, failure: str, api_base: str | None = None) -> dict:
        try:
            return await self.client.get(endpoint, api_base=api_base)
        except NotAuthenticatedError:
            raise FitbitToolError(self._unauthenticated_message()) from None
        except FitbitAPIError as e:
            if e.status_code == 401:
                raise FitbitToolError(
                    f"{failure} The Fitbit access token is invalid or expired. "
                    "Call fitbit.start_authorization to re-authorize."
                ) from e
            detail = f" (HTTP {e.status_code})" if e.status_code else " (network error)"
            raise FitbitToolError(f"{failure}{detail}") from e

    async def get_weight(self, days: str | int = "30") -> ToolOutput:
        """Weight log entries for the last 7, 30 or 90 days."""
        period = str(days)
        if period not in WEIGHT_PERIODS:
            raise FitbitToolError(
                f"'days' must be one of {', '.join(WEIGHT_PERIODS)}, got {days!r}."
            )

        data = await self._fetch(
            f"body/weight/date/today/{period}d.json",
            f"Failed to retrieve weight data from Fitbit for the last {period} days. "
            "Check token and permissions.",
        )
        if not data.get("body-weight"):
            return ToolOutput(f"No weight data found in the last {period} days.", empty=True)
        return ToolOutput(_pretty(data))

    async def get_sleep_by_date_range(self, start_date: str, end_date: str) -> ToolOutput:
        """Sleep logs between two dates (inclusive, at most 100 days)."""
        start = _parse_date(start_date, "start_date")
        end = _parse_date(end_date, "end_date")
        if start > end:
            raise FitbitToolError("'start_date' must be on or before 'end_date'.")
        if (end - start).days + 1 > MAX_SLEEP_RANGE_DAYS:
            raise FitbitToolError(
                f"The sleep date range may span at most {MAX_SLEEP_RANGE_DAYS} days."
            )

        data = await self._fetch(
            f"sleep/date/{start_date}/{end_date}.json",
            f"Failed to retrieve sleep data from Fitbit for '{start_date}' to '{end_date}'. "
            "Check token, permissions, date format, and that the range is "
            f"{MAX_SLEEP_RANGE_DAYS} days or less.",
            api_base=self.client.sleep_api_base,
        )
        if not data.get("sleep"):
            return ToolOutput(
                f"No sleep data found for the date range '{start_date}' to '{end_date}'.",
                empty=True,
            )
        return ToolOutput(_pretty(data))

    async def get_exercises(self, after_date: str, limit: int = 20) -> ToolOutput:
        """Logged exercises and activities after a date, oldest first."""
        _parse_date(after_date, "after_date")
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise FitbitToolError(f"'limit' must be an integer, got {limit!r}.") from None
        if not 1 <= limit <= MAX_EXERCISE_LIMIT:
            raise FitbitToolError(f"'limit' must be between 1 and {MAX_EXERCISE_LIMIT}.")

        data = await self._fetch(
            f"activities/list.json?afterDate={after_date}&sort=asc&offset=0&limit={limit}",
            f"Failed to retrieve exercise data from Fitbit after '{after_date}'. "
            "Check API permissions and date format.",
        )
        if not data.get("activities"):
            return ToolOutput(f"No exercise data found after date '{after_date}'.", empty=True)
        return ToolOutput(_pretty(data))

    async def get_profile(self) -> ToolOutput:
        """The authorized user's Fitbit profile."""
        data = await self._fetch(
            "profile.json",
            "Failed to retrieve profile data from Fitbit. Check token and permissions.",
        )
        if not data.get("user"):
            return ToolOutput("No profile data returned by Fitbit.", empty=True)
        return ToolOutput(_pretty(data))

    async def get_auth_status(self) -> ToolOutput:
        status = self.token_manager.status()
        status["authorization_flow"] = self.auth_server.state.value
        if self.auth_server.last_outcome is not None:
            status["last_flow_outcome"] = self.auth_server.last_outcome.value
        status["authorize_url"] = self.auth_server.auth_entry_url
        return ToolOutput(_pretty(status))

    async def start_authorization(self) -> ToolOutput:
        """Start the local authorization flow (no-op if one is already running)."""
        if self.auth_server.is_active:
            return ToolOutput(
                "An authorization flow is already in progress. Open "
                f"{self.auth_server.auth_entry_url} in a browser to complete it."
            )

        task = self.auth_server.start_authorization_flow()
        if task is None:
            raise FitbitToolError(
                "Cannot start Fitbit authorization: FITBIT_CLIENT_ID and "
                "FITBIT_CLIENT_SECRET are not configured."
            )
        logger.info("fitbit_authorization_started_by_tool")
        return ToolOutput(
            "Authorization flow started. Open "
            f"{self.auth_server.auth_entry_url} in a browser and approve access."
        )

    async def revoke_authorization(self) -> ToolOutput:
        """Forget the stored token locally; the grant stays valid at Fitbit."""
        await self.token_manager.revoke()
        return ToolOutput(
            "Local Fitbit tokens removed. Call fitbit.start_authorization to authorize again."
        )

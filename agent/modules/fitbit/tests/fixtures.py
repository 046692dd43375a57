"""Shared payloads and helpers for Fitbit module tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx

from modules.fitbit.token_store import TokenRecord

TOKEN_RESPONSE = {
    "access_token": "new-access-token",
    "refresh_token": "new-refresh-token",
    "expires_in": 28800,
    "scope": "sleep weight activity profile",
    "token_type": "Bearer",
    "user_id": "ABC123",
}

WEIGHT_RESPONSE = {
    "body-weight": [
        {"dateTime": "2026-10-10", "value": "81.4"},
        {"dateTime": "2026-10-12", "value": "81.1"},
    ]
}

WEIGHT_RESPONSE_EMPTY = {"body-weight": []}

SLEEP_RESPONSE = {
    "sleep": [
        {
            "logId": 44112233,
            "dateOfSleep": "2026-10-11",
            "startTime": "2026-10-10T23:12:00.000",
            "endTime": "2026-10-11T07:01:30.000",
            "duration": 28140000,
            "minutesAsleep": 431,
            "minutesAwake": 38,
            "efficiency": 92,
            "type": "stages",
            "isMainSleep": True,
        }
    ]
}

SLEEP_RESPONSE_EMPTY = {"sleep": []}

ACTIVITIES_RESPONSE = {
    "activities": [
        {
            "logId": 55443322,
            "activityName": "Run",
            "calories": 412,
            "duration": 2520000,
            "steps": 5210,
            "startTime": "2026-10-12T07:30:00.000+01:00",
        }
    ],
    "pagination": {"limit": 20, "offset": 0, "sort": "asc", "next": "", "previous": ""},
}

ACTIVITIES_RESPONSE_EMPTY = {"activities": [], "pagination": {"limit": 20, "offset": 0}}

PROFILE_RESPONSE = {
    "user": {
        "fullName": "Sam Runner",
        "age": 34,
        "height": 178.0,
        "weight": 81.1,
        "memberSince": "2019-03-02",
    }
}


def make_record(
    access_token: str = "access-token",
    refresh_token: str = "refresh-token",
    expires_in: int = 3600,
    scope: frozenset[str] = frozenset({"sleep", "weight"}),
) -> TokenRecord:
    """Build a token record expiring ``expires_in`` seconds from now (negative = expired)."""
    return TokenRecord(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        scope=scope,
    )


def mock_response(status_code: int = 200, json_data=None, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.is_success = 200 <= status_code < 300
    resp.text = text
    if json_data is None:
        resp.json.side_effect = ValueError("No JSON body")
    else:
        resp.json.return_value = json_data
    return resp


def mock_async_client(mock_client_cls: MagicMock, *, get=None, post=None) -> AsyncMock:
    """Wire a patched ``httpx.AsyncClient`` class to return a context-managed mock.

    ``get``/``post`` may be a response, or an exception to raise.
    """
    mock_client = AsyncMock()
    for name, outcome in (("get", get), ("post", post)):
        if isinstance(outcome, BaseException):
            getattr(mock_client, name).side_effect = outcome
        elif outcome is not None:
            getattr(mock_client, name).return_value = outcome
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


def connection_error() -> httpx.ConnectError:
    return httpx.ConnectError("connection refused")


class FakeUvicornServer:
    """Stands in for ``uvicorn.Server``: never binds, runs until told to exit."""

    instances: list[FakeUvicornServer] = []

    def __init__(self, config) -> None:
        self.config = config
        self.started = False
        self.should_exit = False
        type(self).instances.append(self)

    async def serve(self) -> None:
        self.started = True
        while not self.should_exit:
            await asyncio.sleep(0.01)


def fake_server_class() -> type[FakeUvicornServer]:
    """Fresh FakeUvicornServer subclass with its own instance list."""
    return type("FakeUvicornServer", (FakeUvicornServer,), {"instances": []})


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the running loop until it holds or ``timeout`` passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)

"""Shared test fixtures for the agent test suite.

Provides isolated settings, a non-binding replacement for ``uvicorn.Server``
and a patched browser launcher so the Fitbit module can be started end to end
without network access or a free local port.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from modules.fitbit.tests.fixtures import fake_server_class
from shared.config import Settings


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def token_file(tmp_path):
    """Path of the token file used by the module under test."""
    return tmp_path / "fitbit_tokens.json"


@pytest.fixture
def fitbit_settings(token_file):
    """Settings with test credentials and a temporary token file.

    Values are passed explicitly so a developer's ``.env`` cannot leak in.
    """
    return Settings(
        service_auth_token="service-token",
        fitbit_client_id="client-id",
        fitbit_client_secret="client-secret",
        fitbit_token_file=str(token_file),
        fitbit_callback_port=3000,
        fitbit_redirect_uri="",
        fitbit_open_browser=False,
        fitbit_refresh_on_read=True,
        fitbit_refresh_margin_seconds=300,
    )


# ---------------------------------------------------------------------------
# Local listener / browser
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_uvicorn():
    """Replace ``uvicorn.Server`` in the callback receiver with a fake.

    Yields the fake class; ``instances`` lists every server it created.
    """
    cls = fake_server_class()
    with patch("modules.fitbit.callback_server.uvicorn.Server", cls):
        yield cls


@pytest.fixture
def mock_browser():
    with patch("modules.fitbit.callback_server.webbrowser.open", return_value=True) as mock_open:
        yield mock_open


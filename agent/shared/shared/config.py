"""Configuration management using Pydantic Settings."""

from __future__ import annotations

import json
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_list(v: object) -> list[str]:
    """Parse a list from either a JSON array string, comma-separated string, or list."""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return []
        if v.startswith("["):
            return json.loads(v)
        return [item.strip() for item in v.split(",") if item.strip()]
    return list(v)  # type: ignore[arg-type]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Shared bearer token for orchestrator -> module calls. Empty disables the check.
    service_auth_token: str = ""

    # Fitbit OAuth app (register at https://dev.fitbit.com/apps)
    fitbit_client_id: str = ""
    fitbit_client_secret: str = ""

    # Provider endpoints
    fitbit_authorize_url: str = "https://www.fitbit.com/oauth2/authorize"
    fitbit_token_url: str = "https://api.fitbit.com/oauth2/token"
    fitbit_api_base: str = "https://api.fitbit.com/1"
    # Sleep resources are versioned separately
    fitbit_sleep_api_base: str = "https://api.fitbit.com/1.2"

    # Stored as str to avoid pydantic-settings JSON parse issues with env vars.
    # Use parse_list() at the point of use.
    fitbit_scopes: str = "activity,heartrate,profile,sleep,weight"

    # Local callback receiver (loopback only)
    fitbit_callback_host: str = "127.0.0.1"
    fitbit_callback_port: int = 3000
    # Must match the redirect URL registered with the Fitbit app.
    # Empty means http://localhost:<port>/callback
    fitbit_redirect_uri: str = ""
    fitbit_open_browser: bool = True

    # Relative paths resolve against the working directory
    fitbit_token_file: str = ".fitbit_tokens.json"

    # Refresh on read when the token expires within the margin
    fitbit_refresh_on_read: bool = True
    fitbit_refresh_margin_seconds: int = 300

    fitbit_request_timeout: float = 15.0

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def fitbit_configured(self) -> bool:
        return bool(self.fitbit_client_id and self.fitbit_client_secret)

    @property
    def fitbit_callback_url(self) -> str:
        """Redirect URI the provider sends the user back to."""
        if self.fitbit_redirect_uri:
            return self.fitbit_redirect_uri
        return f"http://localhost:{self.fitbit_callback_port}/callback"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()

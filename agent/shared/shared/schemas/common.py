"""Common schemas used across services."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Standard health check response.

    ``authorized`` is only reported by modules that hold provider credentials.
    """

    status: str = "ok"
    authorized: bool | None = None

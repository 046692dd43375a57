"""Inter-service authentication for module endpoints.

The orchestrator and every module share one ``SERVICE_AUTH_TOKEN``. Calls to
``/manifest`` and ``/execute`` must carry ``Authorization: Bearer <token>``::

    from shared.auth import require_service_auth

    @app.post("/execute")
    async def execute(call: ToolCall, _=Depends(require_service_auth)):
        ...

``/health`` stays open so container probes need no credentials.
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import HTTPException, Request

from shared.config import get_settings

logger = structlog.get_logger()


async def require_service_auth(request: Request) -> None:
    """FastAPI dependency that checks the shared service token.

    An empty ``service_auth_token`` disables the check (local development).
    """
    expected = get_settings().service_auth_token
    if not expected:
        logger.warning(
            "service_auth_disabled",
            path=request.url.path,
            hint="Set SERVICE_AUTH_TOKEN in .env for production",
        )
        return

    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Missing service auth token")

    if not hmac.compare_digest(token.encode(), expected.encode()):
        logger.warning(
            "service_auth_failed",
            path=request.url.path,
            remote=request.client.host if request.client else "unknown",
        )
        raise HTTPException(status_code=401, detail="Invalid service auth token")

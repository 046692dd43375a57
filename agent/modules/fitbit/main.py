"""Fitbit module - FastAPI service.

Startup loads (and if needed refreshes) the persisted Fitbit token before the
service reports ready. If no usable token results, the local authorization
flow is started in the background; tool calls made meanwhile return an
"unauthorized" failure instead of waiting.
"""

from __future__ import annotations

import structlog
from fastapi import Depends, FastAPI

from modules.fitbit.callback_server import AuthorizationCallbackServer
from modules.fitbit.client import FitbitClient
from modules.fitbit.exceptions import FitbitToolError
from modules.fitbit.manifest import MANIFEST
from modules.fitbit.oauth import FitbitOAuthClient
from modules.fitbit.token_manager import TokenManager
from modules.fitbit.token_store import TokenStore
from modules.fitbit.tools import FitbitTools
from shared.auth import require_service_auth
from shared.config import get_settings, parse_list
from shared.schemas.common import HealthResponse
from shared.schemas.tools import ModuleManifest, ToolCall, ToolResult

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Fitbit Module", version="1.0.0")

TOOL_MAP = {
    "get_weight",
    "get_sleep_by_date_range",
    "get_exercises",
    "get_profile",
    "get_auth_status",
    "start_authorization",
    "revoke_authorization",
}

tools: FitbitTools | None = None
token_manager: TokenManager | None = None
auth_server: AuthorizationCallbackServer | None = None


@app.on_event("startup")
async def startup():
    global tools, token_manager, auth_server
    settings = get_settings()

    if not settings.fitbit_configured:
        logger.warning(
            "fitbit_credentials_missing",
            msg="Set FITBIT_CLIENT_ID and FITBIT_CLIENT_SECRET in .env",
        )

    oauth = FitbitOAuthClient(
        settings.fitbit_client_id,
        settings.fitbit_client_secret,
        authorize_url=settings.fitbit_authorize_url,
        token_url=settings.fitbit_token_url,
        scopes=parse_list(settings.fitbit_scopes),
        timeout=settings.fitbit_request_timeout,
    )
    token_manager = TokenManager(
        TokenStore(settings.fitbit_token_file),
        oauth,
        refresh_on_read=settings.fitbit_refresh_on_read,
        refresh_margin_seconds=settings.fitbit_refresh_margin_seconds,
    )
    await token_manager.initialize()

    auth_server = AuthorizationCallbackServer(
        oauth,
        token_manager,
        redirect_uri=settings.fitbit_callback_url,
        host=settings.fitbit_callback_host,
        port=settings.fitbit_callback_port,
        open_browser=settings.fitbit_open_browser,
    )
    client = FitbitClient(
        token_manager.get_fresh_access_token,
        api_base=settings.fitbit_api_base,
        sleep_api_base=settings.fitbit_sleep_api_base,
        on_unauthorized=token_manager.invalidate,
        timeout=settings.fitbit_request_timeout,
    )
    tools = FitbitTools(client, token_manager, auth_server)

    if token_manager.get_access_token() is None:
        logger.info("fitbit_starting_authorization_flow")
        auth_server.start_authorization_flow()
    else:
        logger.info("fitbit_using_persisted_token")

    logger.info("fitbit_module_ready")


@app.on_event("shutdown")
async def shutdown():
    if auth_server is not None:
        await auth_server.stop()
    if token_manager is not None:
        await token_manager.wait_for_persistence()


@app.get("/manifest", response_model=ModuleManifest)
async def manifest(_=Depends(require_service_auth)):
    """Return the module manifest."""
    return MANIFEST


@app.post("/execute", response_model=ToolResult)
async def execute(call: ToolCall, _=Depends(require_service_auth)):
    """Execute a tool call."""
    if tools is None:
        return ToolResult(tool_name=call.tool_name, success=False, error="Module not ready")

    tool_name = call.tool_name.split(".")[-1]
    args = dict(call.arguments)
    # Single-user module: the orchestrator's user id is not needed
    args.pop("user_id", None)

    if tool_name not in TOOL_MAP:
        return ToolResult(
            tool_name=call.tool_name,
            success=False,
            error=f"Unknown tool: {call.tool_name}",
        )

    try:
        method = getattr(tools, tool_name)
        output = await method(**args)
        return ToolResult(
            tool_name=call.tool_name,
            success=True,
            result=output.text,
            empty=output.empty,
        )
    except FitbitToolError as e:
        logger.info("tool_call_failed", tool=call.tool_name, error=str(e))
        return ToolResult(tool_name=call.tool_name, success=False, error=str(e))
    except TypeError as e:
        logger.warning("tool_invalid_arguments", tool=call.tool_name, error=str(e))
        return ToolResult(
            tool_name=call.tool_name,
            success=False,
            error=f"Invalid arguments for {call.tool_name}: {e}",
        )
    except Exception as e:
        logger.error("tool_execution_error", tool=call.tool_name, error=str(e), exc_info=True)
        return ToolResult(tool_name=call.tool_name, success=False, error=str(e))


@app.get("/health", response_model=HealthResponse)
async def health():
    authorized = token_manager is not None and token_manager.get_access_token() is not None
    return HealthResponse(status="ok", authorized=authorized)

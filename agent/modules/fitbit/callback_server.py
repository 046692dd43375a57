"""Ephemeral local HTTP listener that completes the Fitbit authorization code flow.

Flow states::

    IDLE -> LISTENING -> AWAITING_CALLBACK -> COMPLETING -> CLOSED -> IDLE
                 \\                                 \\
                  +--------------> ERROR <----------+----> IDLE

Only one flow may be active per process. The listener serves two routes:
``GET /auth`` redirects to the Fitbit consent page, and ``GET /callback``
receives the authorization code. Whatever the outcome, the listener is torn
down after the first callback and the receiver returns to ``IDLE``.

There is no timeout on the wait for the user; the listener stays bound until
a callback arrives or the process stops.
"""

from __future__ import annotations

import asyncio
import enum
import webbrowser

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse

from modules.fitbit.exceptions import TokenExchangeError
from modules.fitbit.oauth import FitbitOAuthClient
from modules.fitbit.token_manager import TokenManager

logger = structlog.get_logger()

SUCCESS_MESSAGE = (
    "Authorization successful! You can close this window. "
    "The Fitbit module is now authenticated."
)
MISSING_CODE_MESSAGE = "Error: Authorization code missing."
EXCHANGE_FAILED_MESSAGE = "Error obtaining access token. Check the Fitbit module logs."
ALREADY_HANDLED_MESSAGE = "This authorization request has already been handled."


class FlowState(str, enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    AWAITING_CALLBACK = "awaiting_callback"
    COMPLETING = "completing"
    CLOSED = "closed"
    ERROR = "error"


_ACTIVE_STATES = {FlowState.LISTENING, FlowState.AWAITING_CALLBACK, FlowState.COMPLETING}


class AuthorizationCallbackServer:
    """Runs the local redirect/callback listener for one authorization flow at a time."""

    def __init__(
        self,
        oauth: FitbitOAuthClient,
        token_manager: TokenManager,
        *,
        redirect_uri: str,
        host: str = "127.0.0.1",
        port: int = 3000,
        open_browser: bool = True,
    ) -> None:
        self.oauth = oauth
        self.token_manager = token_manager
        self.redirect_uri = redirect_uri
        self.host = host
        self.port = port
        self.open_browser = open_browser

        self._state = FlowState.IDLE
        self._last_outcome: FlowState | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

        self.app = FastAPI(title="Fitbit Authorization", docs_url=None, redoc_url=None)
        self.app.add_api_route("/auth", self._handle_auth, methods=["GET"])
        self.app.add_api_route("/callback", self._handle_callback, methods=["GET"])

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def last_outcome(self) -> FlowState | None:
        """CLOSED or ERROR for the most recent finished flow."""
        return self._last_outcome

    @property
    def flow_task(self) -> asyncio.Task | None:
        """Handle of the running flow, if any."""
        return self._task

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def auth_entry_url(self) -> str:
        return f"http://localhost:{self.port}/auth"

    def start_authorization_flow(self) -> asyncio.Task | None:
        """Bind the listener in the background and return the flow's task.

        No-op (returns the running task) if a flow is already active.
        Returns None when client credentials are not configured.
        """
        if self.is_active:
            logger.info("fitbit_auth_flow_already_active", state=self._state.value)
            return self._task

        if not self.oauth.configured:
            logger.error(
                "fitbit_credentials_missing",
                msg="Set FITBIT_CLIENT_ID and FITBIT_CLIENT_SECRET in .env",
            )
            return None

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._state = FlowState.LISTENING
        self._task = asyncio.create_task(self._run(self._server))
        return self._task

    async def stop(self) -> None:
        """Tear down a running flow and wait for it to finish."""
        if not self.is_active:
            return
        logger.info("fitbit_auth_flow_stopping", state=self._state.value)
        if self._server is not None:
            self._server.should_exit = True
        await self._task

    async def _run(self, server: uvicorn.Server) -> None:
        announcer = asyncio.create_task(self._announce(server))
        try:
            await server.serve()
        except (OSError, SystemExit) as e:
            # uvicorn exits instead of raising when the port cannot be bound
            logger.error("fitbit_callback_server_failed", port=self.port, error=repr(e))
            self._state = FlowState.ERROR
        finally:
            announcer.cancel()
            if self._state not in (FlowState.CLOSED, FlowState.ERROR):
                self._state = FlowState.ERROR
            self._last_outcome = self._state
            self._server = None
            self._state = FlowState.IDLE
            logger.info("fitbit_callback_server_closed", outcome=self._last_outcome.value)

    async def _announce(self, server: uvicorn.Server) -> None:
        while not server.started:
            if server.should_exit:
                return
            await asyncio.sleep(0.05)

        if self._state == FlowState.LISTENING:
            self._state = FlowState.AWAITING_CALLBACK

        logger.warning(
            "fitbit_authorization_required",
            url=self.auth_entry_url,
            msg="Open the URL in a browser to authorize Fitbit access",
        )
        if not self.open_browser:
            return
        try:
            opened = await asyncio.to_thread(webbrowser.open, self.auth_entry_url)
        except webbrowser.Error as e:
            logger.warning("fitbit_browser_open_failed", error=str(e))
            return
        if not opened:
            logger.warning("fitbit_browser_open_failed", url=self.auth_entry_url)

    def _finish(self, outcome: FlowState) -> None:
        self._state = outcome
        if self._server is not None:
            self._server.should_exit = True

    async def _handle_auth(self) -> RedirectResponse:
        logger.info("fitbit_redirecting_to_consent")
        return RedirectResponse(self.oauth.build_authorize_url(self.redirect_uri), status_code=302)

    async def _handle_callback(self, request: Request) -> PlainTextResponse:
        if self._state not in (FlowState.LISTENING, FlowState.AWAITING_CALLBACK):
            logger.warning("fitbit_duplicate_callback", state=self._state.value)
            return PlainTextResponse(ALREADY_HANDLED_MESSAGE, status_code=409)

        error = request.query_params.get("error")
        if error:
            description = request.query_params.get("error_description", "Unknown error")
            logger.error("fitbit_authorization_denied", error=error, description=description)
            self._finish(FlowState.ERROR)
            return PlainTextResponse(
                f"Error: Authorization failed ({error}): {description}", status_code=400
            )

        code = request.query_params.get("code")
        if not code:
            logger.error("fitbit_callback_missing_code")
            self._finish(FlowState.ERROR)
            return PlainTextResponse(MISSING_CODE_MESSAGE, status_code=400)

        self._state = FlowState.COMPLETING
        logger.info("fitbit_callback_received")
        try:
            record = await self.oauth.exchange_code(code, self.redirect_uri)
        except TokenExchangeError as e:
            logger.error(
                "fitbit_code_exchange_failed",
                status=e.status_code,
                body=(e.body or "")[:500],
                error=str(e),
            )
            self._finish(FlowState.ERROR)
            return PlainTextResponse(EXCHANGE_FAILED_MESSAGE, status_code=500)
        except Exception as e:
            logger.error("fitbit_callback_failed", error=str(e), exc_info=True)
            self._finish(FlowState.ERROR)
            return PlainTextResponse(EXCHANGE_FAILED_MESSAGE, status_code=500)

        self.token_manager.adopt(record)
        self._finish(FlowState.CLOSED)
        logger.info("fitbit_authorization_complete")
        return PlainTextResponse(SUCCESS_MESSAGE, status_code=200)

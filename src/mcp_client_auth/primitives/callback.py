"""Local HTTP listener that receives the OAuth redirect.

A CallbackServer is bound to the host and port of the redirect URI for the
duration of one authorization attempt. It resolves on the first GET to the
redirect path and is always shut down when its context exits.
"""

from __future__ import annotations

import asyncio
import html
import logging
import socket
from collections.abc import Callable
from urllib.parse import urlparse

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from mcp_client_auth.models.errors import (
    CallbackServerError,
    CallbackTimeoutError,
    OAuth2Error,
)
from mcp_client_auth.models.flow import AuthorizationResponse

logger = logging.getLogger(__name__)

SUCCESS_PAGE = """<html>
  <body>
    <h1>Authentication successful!</h1>
    <p>You can close this window and return to your terminal.</p>
    <script>window.close();</script>
  </body>
</html>"""

ERROR_PAGE = """<html>
  <body>
    <h1>Authentication Error</h1>
    <p>{message}</p>
  </body>
</html>"""

CallbackValidator = Callable[[AuthorizationResponse], str]


class CallbackServer:
    """One-shot OAuth redirect receiver.

    The validator turns the received AuthorizationResponse into an
    authorization code or raises an OAuth2Error; either outcome becomes the
    result of wait().
    """

    def __init__(self, redirect_uri: str, validator: CallbackValidator):
        parsed = urlparse(redirect_uri)
        if not parsed.hostname:
            raise CallbackServerError(f"Redirect URI has no host: {redirect_uri}")

        self.host = parsed.hostname
        self.port = parsed.port
        if self.port is None:
            self.port = 443 if parsed.scheme == "https" else 80
        self.path = parsed.path or "/"
        self._validator = validator

        self._result: asyncio.Future[str] | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None

        self._app = Starlette(
            routes=[Route(self.path, self._handle_callback, methods=["GET"])]
        )

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    async def start(self) -> None:
        """Bind the listening socket and start serving.

        Raises:
            CallbackServerError: If the port cannot be bound
        """
        self._result = asyncio.get_running_loop().create_future()

        try:
            sock = self._bind_socket()
        except OSError as e:
            raise CallbackServerError(
                f"Cannot listen for OAuth callback on {self.host}:{self.port}: {e}"
            ) from e

        # Port 0 lets the OS pick; report what we actually got
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            app=self._app, log_level="warning", lifespan="off", access_log=False
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._serve_task.done():
                raise CallbackServerError("OAuth callback listener failed to start")
            await asyncio.sleep(0.01)

        logger.info(
            f"Listening for OAuth callback on http://{self.host}:{self.port}{self.path}"
        )

    async def wait(self, timeout: float) -> str:
        """Wait for the callback and return the authorization code.

        Raises:
            CallbackTimeoutError: If nothing arrives within timeout seconds
            OAuth2Error: Whatever the validator raised for the callback
        """
        if self._result is None:
            raise CallbackServerError("Callback server has not been started")

        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except asyncio.TimeoutError as e:
            raise CallbackTimeoutError(
                f"No OAuth callback received within {timeout:g} seconds"
            ) from e

    async def stop(self) -> None:
        """Shut the listener down. Safe to call more than once."""
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            await self._serve_task
            self._serve_task = None
            logger.debug("OAuth callback listener closed")
        if self._result is not None and not self._result.done():
            self._result.cancel()

    async def __aenter__(self) -> CallbackServer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    def _bind_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
        except OSError:
            sock.close()
            raise
        sock.setblocking(False)
        return sock

    async def _handle_callback(self, request: Request) -> Response:
        """Handle the redirect from the authorization server."""
        if self._result is None or self._result.done():
            return HTMLResponse(
                ERROR_PAGE.format(message="This authorization attempt is over."),
                status_code=410,
            )

        params = request.query_params
        auth_response = AuthorizationResponse(
            code=params.get("code"),
            state=params.get("state"),
            error=params.get("error"),
            error_description=params.get("error_description"),
            error_uri=params.get("error_uri"),
        )

        try:
            code = self._validator(auth_response)
        except OAuth2Error as e:
            logger.warning(f"OAuth callback rejected: {e}")
            self._result.set_exception(e)
            return HTMLResponse(
                ERROR_PAGE.format(message=html.escape(str(e))), status_code=400
            )

        self._result.set_result(code)
        return HTMLResponse(SUCCESS_PAGE)

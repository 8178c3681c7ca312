"""Bearer token authentication for HTTPX.

Attaches the current access token to every request and, when a request is
rejected with 401, refreshes once and replays it once.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

import httpx

from mcp_client_auth.services.lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)


class BearerAuth(httpx.Auth):
    """httpx.Auth backed by a TokenLifecycleManager.

    Only usable with httpx.AsyncClient.
    """

    def __init__(self, lifecycle: TokenLifecycleManager):
        self._lifecycle = lifecycle

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self._lifecycle.get_access_token()
        self._add_auth_header(request, token)

        response = yield request

        if response.status_code == 401 and self._lifecycle.can_refresh():
            logger.info(f"Request to {request.url} rejected with 401, refreshing token")
            token = (await self._lifecycle.refresh()).access_token
            self._add_auth_header(request, token)
            # A second 401 is handed back to the caller as-is
            yield request

    @staticmethod
    def _add_auth_header(request: httpx.Request, token: str) -> None:
        request.headers["Authorization"] = f"Bearer {token}"

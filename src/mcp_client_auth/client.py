"""MCP client connection with integrated OAuth support.

Decides whether a server needs authentication at all, engages McpOAuth only
when it does, and negotiates a transport once a token (or a no-auth
decision) is available.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from urllib.parse import urlparse

import httpx

from mcp_client_auth.config import OAuthOptions
from mcp_client_auth.models.errors import OAuth2Error, UnauthenticatedError
from mcp_client_auth.models.flow import AuthStatus
from mcp_client_auth.oauth_client import McpOAuth
from mcp_client_auth.services.security import is_loopback_host
from mcp_client_auth.storage import TokenStore
from mcp_client_auth.transport import (
    TransportConnection,
    TransportStrategy,
    default_strategies,
    select_transport,
)

logger = logging.getLogger(__name__)


class McpClient:
    """Connection manager for one MCP server URL."""

    def __init__(
        self,
        url: str,
        oauth: McpOAuth | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        protocol_version: str | None = None,
        store: TokenStore | None = None,
        transports: Sequence[TransportStrategy] | None = None,
    ):
        self.url = url
        self.oauth = oauth
        if self.oauth is None:
            options = {
                "server_url": url,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "protocol_version": protocol_version,
            }
            self.oauth = McpOAuth(
                OAuthOptions(**{k: v for k, v in options.items() if v is not None}),
                store=store,
            )

        self.transports = list(transports) if transports else default_strategies()
        self.requires_auth: bool | None = None

        self._http_client: httpx.AsyncClient | None = None
        self._connection: TransportConnection | None = None

    @property
    def connection(self) -> TransportConnection | None:
        return self._connection

    async def is_auth_required(self) -> AuthStatus:
        """Report whether authentication is needed and whether we have it.

        When it is needed but no usable token is held, a fresh
        authorization request is included for the caller to present.
        """
        await self._check_auth_required()

        if not self.requires_auth:
            return AuthStatus(is_required=False, is_authenticated=True)

        if self.oauth.has_valid_token():
            return AuthStatus(is_required=True, is_authenticated=True)

        if self.oauth.can_refresh():
            try:
                await self.oauth.refresh_token()
                return AuthStatus(is_required=True, is_authenticated=True)
            except OAuth2Error as e:
                logger.warning(f"Stored refresh token unusable, login required: {e}")

        return AuthStatus(
            is_required=True,
            is_authenticated=False,
            authorization_request=self.oauth.create_authorization_request(),
        )

    async def get_oauth(self) -> McpOAuth | None:
        """The OAuth session, or None when the server needs no authentication."""
        await self._check_auth_required()
        return self.oauth if self.requires_auth else None

    async def connect(self) -> TransportConnection:
        """Connect with the first transport strategy that works.

        Raises:
            ValueError: If the URL is plain HTTP to a non-local host
            UnauthenticatedError: If auth is required and no valid token is held,
                or the server still answers 401 after one refresh
            ConnectionError: If no transport could connect
        """
        if self._connection is not None:
            return self._connection

        parsed = urlparse(self.url)
        if parsed.scheme != "https" and not is_loopback_host(parsed.hostname):
            raise ValueError("MCP servers must be HTTPS")

        await self._check_auth_required()

        if self.requires_auth:
            if not self.oauth.has_valid_token() and not self.oauth.can_refresh():
                raise UnauthenticatedError(
                    "Authentication required. Please authenticate first using get_oauth()"
                )
            http_client = self.oauth.http_client(timeout=self.oauth.options.http_timeout)
        else:
            http_client = httpx.AsyncClient(timeout=self.oauth.options.http_timeout)

        try:
            self._connection = await select_transport(
                self.transports,
                http_client,
                self.url,
                self.oauth.options.protocol_version,
            )
        except BaseException:
            await http_client.aclose()
            raise

        self._http_client = http_client
        return self._connection

    async def disconnect(self) -> None:
        if self._connection is not None:
            await self._connection.aclose()
            self._connection = None
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def close(self) -> None:
        await self.disconnect()
        await self.oauth.close()

    async def __aenter__(self) -> McpClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _check_auth_required(self) -> None:
        if self.requires_auth is not None:
            return

        required = await self.oauth.check_auth_required()
        if required:
            await self.oauth.init()
        self.requires_auth = required

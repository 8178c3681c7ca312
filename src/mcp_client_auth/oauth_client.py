"""Complete OAuth 2.1 client orchestration for MCP authentication.

Coordinates discovery, registration, authorization, and token lifecycle
for servers that keep their OAuth endpoints at conventional paths and only
sometimes support dynamic registration.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Any

import httpx

from mcp_client_auth.auth import BearerAuth
from mcp_client_auth.config import OAuthOptions
from mcp_client_auth.models.discovery import ServerMetadata
from mcp_client_auth.models.errors import (
    NoClientIdError,
    OAuthNotInitializedError,
)
from mcp_client_auth.models.flow import AuthorizationRequest, FlowState
from mcp_client_auth.models.registration import ClientCredentials
from mcp_client_auth.models.tokens import StoredToken
from mcp_client_auth.primitives.discovery import MetadataResolver
from mcp_client_auth.services.flow import OAuth2FlowManager
from mcp_client_auth.services.lifecycle import TokenLifecycleManager
from mcp_client_auth.services.registration import ClientRegistrar, OAuth2Registration
from mcp_client_auth.services.tokens import OAuth2TokenManager
from mcp_client_auth.storage import JsonFileTokenStore, TokenStore

logger = logging.getLogger(__name__)


class McpOAuth:
    """OAuth 2.1 session against one MCP server.

    Typical use:

        oauth = McpOAuth(OAuthOptions(server_url="https://mcp.example.com/sse"))
        await oauth.init()
        if not oauth.has_valid_token():
            await oauth.authorize()
        async with oauth.http_client() as client:
            await client.get("https://mcp.example.com/api")

    Persisted state is read once in init(); afterwards memory is the source
    of truth and the store only mirrors it.
    """

    def __init__(
        self,
        options: OAuthOptions,
        store: TokenStore | None = None,
    ):
        """Initialize the OAuth session.

        Args:
            options: Server URL, client identity, redirect URI and timeouts
            store: Where to persist client and token state. Defaults to a
                   JSON file at options.token_path.
        """
        self.options = options
        self.store: TokenStore = store or JsonFileTokenStore(options.token_path)

        self.resolver = MetadataResolver(
            options.auth_base_url,
            options.protocol_version,
            timeout=options.discovery_timeout,
        )
        self.registration = OAuth2Registration(
            protocol_version=options.protocol_version, timeout=options.http_timeout
        )
        self.registrar = ClientRegistrar(
            self.registration,
            client_name=options.client_name,
            redirect_uri=options.redirect_uri,
            client_id=options.client_id,
            client_secret=options.client_secret,
            scope=options.scope,
        )
        self.token_manager = OAuth2TokenManager(timeout=options.http_timeout)
        self.flow_manager = OAuth2FlowManager(self.token_manager, options.redirect_uri)
        self.lifecycle = TokenLifecycleManager(
            self.token_manager, self.store, options.expiry_buffer_seconds
        )

        self._initialized = False

    @property
    def server_url(self) -> str:
        return self.options.server_url

    @property
    def metadata(self) -> ServerMetadata | None:
        return self.resolver.metadata

    @property
    def client(self) -> ClientCredentials | None:
        return self.lifecycle.client

    @property
    def flow_state(self) -> FlowState:
        return self.flow_manager.state

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        """Resolve endpoints, load persisted state and settle the client id.

        Safe to call repeatedly; only the first successful call does work.

        Raises:
            NoClientIdError: If no client id was configured, stored or registered
        """
        if self._initialized:
            return

        metadata = await self.resolver.resolve()

        persisted = await self.store.load()
        if persisted is not None and persisted.token is not None:
            self.lifecycle.token = persisted.token
            logger.debug("Loaded stored token")

        client, newly_registered = await self.registrar.ensure_client(
            metadata, persisted.client if persisted else None
        )
        self.lifecycle.bind(
            client,
            metadata.token_endpoint,
            metadata.revocation_endpoint or self.options.revocation_endpoint,
        )

        if client is None:
            raise NoClientIdError(
                "No client ID available. Server does not support dynamic registration."
            )

        if newly_registered:
            await self.lifecycle.persist()

        self._initialized = True
        logger.info(f"OAuth initialized for {self.server_url} as {client.client_id}")

    async def check_auth_required(self) -> bool:
        """Probe whether the server rejects anonymous requests.

        Only a 401 counts as "required"; every other status, any network
        failure and running past probe_timeout are treated as "not required".
        The body is never read, so an open event stream cannot stall the probe.
        """
        try:
            status_code = await asyncio.wait_for(
                self._probe_status(), self.options.probe_timeout
            )
        except httpx.HTTPError as e:
            logger.debug(f"Auth probe for {self.server_url} failed: {e}")
            return False
        except asyncio.TimeoutError:
            logger.debug(
                f"Auth probe for {self.server_url} timed out after "
                f"{self.options.probe_timeout}s"
            )
            return False

        required = status_code == 401
        logger.debug(
            f"Auth probe for {self.server_url}: HTTP {status_code}, "
            f"auth {'required' if required else 'not required'}"
        )
        return required

    async def _probe_status(self) -> int:
        async with httpx.AsyncClient(timeout=self.options.probe_timeout) as client:
            async with client.stream(
                "GET",
                self.server_url,
                headers={"Accept": "application/json, text/event-stream"},
            ) as response:
                return response.status_code

    def create_authorization_request(self) -> AuthorizationRequest:
        """Build a new PKCE authorization request, replacing any outstanding one.

        Raises:
            OAuthNotInitializedError: If init() has not completed
        """
        metadata, client = self._require_initialized()
        return self.flow_manager.build_authorization_request(
            metadata, client.client_id, scope=self.options.scope
        )

    async def wait_for_callback(
        self,
        request: AuthorizationRequest,
        timeout: float | None = None,
    ) -> str:
        """Listen on the redirect URI until the browser comes back.

        Returns:
            The authorization code
        """
        return await self.flow_manager.wait_for_code(
            request, timeout if timeout is not None else self.options.callback_timeout
        )

    async def exchange_code_for_token(
        self, code: str, state: str, code_verifier: str
    ) -> StoredToken:
        """Exchange an authorization code for tokens and keep them.

        Raises:
            StateValidationError: If state does not belong to the outstanding request
            TokenExchangeError: If the token endpoint rejects the exchange
        """
        metadata, client = self._require_initialized()
        self.flow_manager.check_live_state(state)

        token = await self.flow_manager.exchange_code(
            metadata, client, code, code_verifier
        )
        await self.lifecycle.set_token(token)
        return token

    async def authorize(self, open_browser: bool = True) -> StoredToken:
        """Run the whole interactive browser login.

        Raises:
            OAuth2Error: Any terminal condition of the flow attempt
        """
        request = self.create_authorization_request()

        logger.info(f"Authorize this client by visiting: {request.url}")
        if open_browser:
            logger.info("Opening browser for authentication...")
            webbrowser.open(request.url)

        code = await self.wait_for_callback(request)
        return await self.exchange_code_for_token(
            code, request.state, request.code_verifier
        )

    def has_valid_token(self) -> bool:
        return self.lifecycle.has_valid_token()

    def can_refresh(self) -> bool:
        return self.lifecycle.can_refresh()

    async def get_access_token(self) -> str:
        """Return a usable access token; see TokenLifecycleManager.get_access_token."""
        return await self.lifecycle.get_access_token()

    async def refresh_token(self) -> StoredToken:
        return await self.lifecycle.refresh()

    async def revoke_token(self) -> bool:
        """Revoke tokens at the server and clear them locally."""
        return await self.lifecycle.revoke()

    async def reset(self, clear_storage: bool = False) -> None:
        """Forget the current token and any outstanding authorization request."""
        self.flow_manager.reset()
        await self.lifecycle.reset(clear_storage)

    async def reset_discovery(self) -> None:
        """Forget cached metadata; the next init() resolves it again."""
        self.resolver.reset()
        self._initialized = False

    def http_client(self, **kwargs: Any) -> httpx.AsyncClient:
        """Create an AsyncClient that authenticates every request."""
        return httpx.AsyncClient(auth=BearerAuth(self.lifecycle), **kwargs)

    async def close(self) -> None:
        """Close all service connections."""
        await self.resolver.close()
        await self.registration.close()
        await self.token_manager.close()

    async def __aenter__(self) -> McpOAuth:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _require_initialized(self) -> tuple[ServerMetadata, ClientCredentials]:
        metadata = self.resolver.metadata
        client = self.lifecycle.client
        if not self._initialized or metadata is None or client is None:
            raise OAuthNotInitializedError("OAuth not initialized; call init() first")
        return metadata, client

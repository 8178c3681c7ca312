"""Token lifecycle management.

Owns the in-memory token and client identity for one session. The token
store only ever receives snapshots written from here.
"""

from __future__ import annotations

import logging

from mcp_client_auth.models.errors import (
    OAuth2Error,
    OAuthNotInitializedError,
    TokenExpiredError,
    TokenRefreshError,
    TokenRevocationError,
    UnauthenticatedError,
)
from mcp_client_auth.models.registration import ClientCredentials
from mcp_client_auth.models.tokens import StoredToken, TokenEndpointRequest
from mcp_client_auth.services.tokens import OAuth2TokenManager
from mcp_client_auth.storage import PersistedState, TokenStore

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Tracks expiry, refreshes, revokes and persists the session's token.

    Refresh is not guarded against concurrent callers; use one manager per
    session.
    """

    def __init__(
        self,
        token_manager: OAuth2TokenManager,
        store: TokenStore,
        buffer_seconds: float = 300.0,
    ):
        self._token_manager = token_manager
        self._store = store
        self.buffer_seconds = buffer_seconds

        self.client: ClientCredentials | None = None
        self.token: StoredToken | None = None
        self.token_endpoint: str | None = None
        self.revocation_endpoint: str | None = None

    def bind(
        self,
        client: ClientCredentials | None,
        token_endpoint: str,
        revocation_endpoint: str | None = None,
    ) -> None:
        """Attach the client identity and endpoints resolved during init."""
        self.client = client
        self.token_endpoint = token_endpoint
        self.revocation_endpoint = revocation_endpoint

    def has_valid_token(self, now: float | None = None) -> bool:
        """True iff a token is held and is not within the expiry buffer."""
        if self.token is None:
            return False
        return self.token.is_valid(self.buffer_seconds, now=now)

    def can_refresh(self) -> bool:
        return self.token is not None and self.token.can_refresh()

    @property
    def access_token(self) -> str | None:
        return self.token.access_token if self.token else None

    async def get_access_token(self) -> str:
        """Return a usable access token, refreshing it first if needed.

        Raises:
            UnauthenticatedError: No token held; authenticate first
            TokenExpiredError: Token expired and there is no refresh token
            TokenRefreshError: Refresh was attempted and failed
        """
        if self.token is None:
            raise UnauthenticatedError(
                "Not authenticated: complete the authorization flow first"
            )

        if self.has_valid_token():
            return self.token.access_token

        if not self.token.can_refresh():
            raise TokenExpiredError(
                "Access token expired and no refresh token is available"
            )

        await self.refresh()
        return self.token.access_token

    async def set_token(self, token: StoredToken) -> None:
        """Adopt a newly issued token and persist it."""
        self.token = token
        await self.persist()

    async def refresh(self) -> StoredToken:
        """Exchange the refresh token for a new access token.

        On failure the held token is dropped; callers decide whether to run
        the interactive flow again.

        Raises:
            TokenRefreshError: If the refresh fails for any reason
            TokenStorageError: If the new token cannot be persisted
        """
        if self.token is None or not self.token.refresh_token:
            raise TokenRefreshError("Cannot refresh token: no refresh token held")
        if self.client is None or self.token_endpoint is None:
            raise OAuthNotInitializedError(
                "Cannot refresh token: client or token endpoint not configured"
            )

        refresh_request = TokenEndpointRequest.refresh(
            token_endpoint=self.token_endpoint,
            refresh_token=self.token.refresh_token,
            client_id=self.client.client_id,
            client_secret=self.client.client_secret,
        )

        try:
            token_response = await self._token_manager.refresh_access_token(
                refresh_request
            )
        except OAuth2Error as e:
            await self._discard_token()
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

        if not token_response.is_success():
            await self._discard_token()
            raise TokenRefreshError(
                f"Token refresh failed: {token_response.describe_error()}",
                error=token_response.error,
                error_description=token_response.error_description,
            )

        new_token = token_response.to_stored_token()
        self.token.access_token = new_token.access_token
        self.token.refresh_token = new_token.refresh_token or self.token.refresh_token
        self.token.expires_at = new_token.expires_at
        self.token.token_type = new_token.token_type
        self.token.scope = new_token.scope or self.token.scope

        await self.persist()
        logger.info("Successfully refreshed access token")
        return self.token

    async def revoke(self) -> bool:
        """Revoke held tokens at the server, then forget them locally.

        The refresh token and access token are revoked independently; one
        failing does not stop the other.

        Returns:
            True if every attempted revocation succeeded
        """
        token = self.token
        succeeded = True

        if token is not None:
            if self.revocation_endpoint is None or self.client is None:
                logger.warning(
                    "No revocation endpoint known; clearing tokens locally only"
                )
                succeeded = False
            else:
                candidates = [
                    (token.refresh_token, "refresh_token"),
                    (token.access_token, "access_token"),
                ]
                for value, hint in candidates:
                    if not value:
                        continue
                    try:
                        await self._token_manager.revoke_token(
                            TokenEndpointRequest.revocation(
                                revocation_endpoint=self.revocation_endpoint,
                                token=value,
                                token_type_hint=hint,
                                client_id=self.client.client_id,
                                client_secret=self.client.client_secret,
                            )
                        )
                        logger.info(f"Revoked {hint}")
                    except TokenRevocationError as e:
                        logger.warning(f"Failed to revoke {hint}: {e}")
                        succeeded = False

        self.token = None
        await self.persist()
        return succeeded

    async def reset(self, clear_storage: bool = False) -> None:
        """Drop the in-memory token, optionally wiping the store too.

        The client registration is kept.
        """
        self.token = None
        if clear_storage:
            await self._store.clear()
            logger.debug("Token state reset and store cleared")
        else:
            logger.debug("In-memory token state reset")

    async def persist(self) -> None:
        """Write the current client and token to the store.

        Raises:
            TokenStorageError: If the store cannot be written
        """
        await self._store.save(PersistedState(client=self.client, token=self.token))

    async def _discard_token(self) -> None:
        self.token = None
        await self.persist()

"""OAuth 2.1 authorization flow orchestration service.

Coordinates one authorization code flow at a time: building the PKCE
request, receiving the browser redirect on a local listener, and trading
the code for tokens.
"""

from __future__ import annotations

import logging

from mcp_client_auth.models.discovery import ServerMetadata
from mcp_client_auth.models.errors import (
    AuthorizationDeniedError,
    CallbackTimeoutError,
    OAuth2Error,
    StateValidationError,
    TokenExchangeError,
)
from mcp_client_auth.models.flow import (
    AuthorizationRequest,
    AuthorizationResponse,
    FlowState,
)
from mcp_client_auth.models.registration import ClientCredentials
from mcp_client_auth.models.tokens import StoredToken, TokenEndpointRequest
from mcp_client_auth.primitives.callback import CallbackServer
from mcp_client_auth.primitives.pkce import PKCEManager
from mcp_client_auth.services.security import generate_state, validate_state
from mcp_client_auth.services.tokens import OAuth2TokenManager

logger = logging.getLogger(__name__)


class OAuth2FlowManager:
    """Orchestrates OAuth 2.1 authorization code flows for MCP authentication.

    Only one authorization request is live at a time: building a new one
    replaces the previous one, whose state will no longer validate.
    """

    def __init__(self, token_manager: OAuth2TokenManager, redirect_uri: str):
        self._pkce_manager = PKCEManager()
        self._token_manager = token_manager
        self.redirect_uri = redirect_uri
        self.state = FlowState.IDLE
        self._live_request: AuthorizationRequest | None = None

    @property
    def live_request(self) -> AuthorizationRequest | None:
        return self._live_request

    def build_authorization_request(
        self,
        metadata: ServerMetadata,
        client_id: str,
        scope: str | None = None,
    ) -> AuthorizationRequest:
        """Start a new authorization attempt.

        Generates a fresh verifier, challenge and state. No I/O happens here.
        """
        pkce_params = self._pkce_manager.generate_parameters()
        request = AuthorizationRequest.build(
            authorization_endpoint=metadata.authorization_endpoint,
            client_id=client_id,
            redirect_uri=self.redirect_uri,
            pkce=pkce_params,
            state=generate_state(),
            scope=scope,
        )

        if self._live_request is not None:
            logger.debug("Replacing outstanding authorization request")
        self._live_request = request
        self.state = FlowState.REQUEST_BUILT

        logger.info(f"Generated authorization URL for client {client_id}")
        return request

    def validate_callback(
        self,
        expected_state: str,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> str:
        """Validate callback parameters received by the caller's own listener.

        Returns:
            The authorization code

        Raises:
            StateValidationError, AuthorizationDeniedError, MissingCodeError
        """
        return self._validate(
            AuthorizationResponse(
                code=code,
                state=state,
                error=error,
                error_description=error_description,
            ),
            expected_state,
        )

    async def wait_for_code(self, request: AuthorizationRequest, timeout: float) -> str:
        """Receive the redirect for request on the local listener.

        The listener accepts exactly one callback and is torn down on every
        exit path.

        Raises:
            CallbackTimeoutError: If the browser never comes back
            CallbackServerError: If the redirect port cannot be bound
            StateValidationError, AuthorizationDeniedError, MissingCodeError
        """
        server = CallbackServer(
            self.redirect_uri,
            lambda response: self._validate(response, request.state),
        )
        try:
            async with server:
                self.state = FlowState.AWAITING_CALLBACK
                return await server.wait(timeout)
        except CallbackTimeoutError:
            self.state = FlowState.TIMED_OUT
            logger.error("Timed out waiting for OAuth callback")
            raise
        except OAuth2Error:
            if self.state in (FlowState.AWAITING_CALLBACK, FlowState.REQUEST_BUILT):
                self.state = FlowState.FAILED
            raise

    async def exchange_code(
        self,
        metadata: ServerMetadata,
        client: ClientCredentials,
        code: str,
        code_verifier: str,
    ) -> StoredToken:
        """Trade an authorization code for tokens.

        A failed exchange is final for this attempt: the live request is
        consumed either way and nothing is retried.

        Raises:
            TokenExchangeError: With the authorization server's error detail
        """
        token_request = TokenEndpointRequest.authorization_code(
            token_endpoint=metadata.token_endpoint,
            code=code,
            redirect_uri=self.redirect_uri,
            code_verifier=code_verifier,
            client_id=client.client_id,
            client_secret=client.client_secret,
        )

        self._live_request = None
        try:
            token_response = await self._token_manager.exchange_code_for_token(
                token_request
            )
        except OAuth2Error as e:
            self.state = FlowState.FAILED
            raise TokenExchangeError(f"Token exchange failed: {e}") from e

        if not token_response.is_success():
            self.state = FlowState.FAILED
            raise TokenExchangeError(
                f"Token exchange failed: {token_response.describe_error()}",
                error=token_response.error,
                error_description=token_response.error_description,
            )

        self.state = FlowState.TOKEN_EXCHANGED
        logger.info("Exchanged authorization code for tokens")
        return token_response.to_stored_token()

    def check_live_state(self, state: str) -> AuthorizationRequest:
        """Ensure state belongs to the outstanding request.

        Raises:
            StateValidationError: If there is no live request or state differs
        """
        if self._live_request is None:
            self.state = FlowState.STATE_MISMATCH
            raise StateValidationError("No authorization request is outstanding")
        try:
            validate_state(self._live_request.state, state)
        except StateValidationError:
            self.state = FlowState.STATE_MISMATCH
            raise
        return self._live_request

    def reset(self) -> None:
        self._live_request = None
        self.state = FlowState.IDLE

    def _validate(self, response: AuthorizationResponse, expected_state: str) -> str:
        try:
            code = self._pkce_manager.validate_authorization_response(
                response, expected_state
            )
        except StateValidationError:
            self.state = FlowState.STATE_MISMATCH
            raise
        except AuthorizationDeniedError as e:
            self.state = FlowState.SERVER_ERROR
            logger.warning(f"Authorization denied by server: {e}")
            raise
        except OAuth2Error:
            self.state = FlowState.FAILED
            raise

        self.state = FlowState.CODE_RECEIVED
        logger.info("Authorization callback successful - received authorization code")
        return code

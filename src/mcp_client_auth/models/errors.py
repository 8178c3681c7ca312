"""Exception hierarchy for MCP OAuth client errors.

Every public operation fails with exactly one subclass of OAuth2Error, so
callers can tell a retryable interactive failure from a fatal setup problem
by type alone.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.1 related errors."""

    pass


class OAuthNotInitializedError(OAuth2Error):
    """Raised when an operation needs state that init() has not set up yet."""

    pass


class DiscoveryError(OAuth2Error):
    """Raised internally when server metadata discovery fails.

    The metadata resolver recovers from this by synthesizing the
    conventional endpoints, so it never reaches callers.
    """

    pass


class RegistrationError(OAuth2Error):
    """Raised when dynamic client registration fails."""

    pass


class NoClientIdError(RegistrationError):
    """Raised at initialization when no client id could be obtained."""

    pass


class AuthorizationError(OAuth2Error):
    """Raised when user authorization fails."""

    pass


class AuthorizationDeniedError(AuthorizationError):
    """Raised when the authorization server redirects back with an error.

    Attributes:
        error: Raw OAuth error code (e.g. "access_denied")
        error_description: Human readable description, if the server sent one
    """

    def __init__(self, error: str, error_description: str | None = None):
        self.error = error
        self.error_description = error_description
        super().__init__(error_description or error)


class CallbackTimeoutError(AuthorizationError):
    """Raised when no callback arrives before the listener times out."""

    pass


class CallbackServerError(AuthorizationError):
    """Raised when the local callback listener cannot be started."""

    pass


class AuthorizationCallbackError(OAuth2Error):
    """Raised when the redirect that reached the listener cannot be trusted or used."""

    pass


class StateValidationError(AuthorizationCallbackError):
    """Raised when a callback or exchange carries a state we did not issue.

    Covers a missing state, a forged one, and the state of a request that
    has since been replaced.
    """

    pass


class MissingCodeError(AuthorizationCallbackError):
    """Raised when a callback carries neither an error nor a code."""

    pass


class TokenStorageError(OAuth2Error):
    """Raised when the token store cannot be written or cleared."""

    pass


class PKCEError(OAuth2Error):
    """Raised when PKCE parameter generation fails."""

    pass


class TokenError(OAuth2Error):
    """Raised when a token or revocation endpoint call fails.

    Attributes:
        error: OAuth error code returned by the token endpoint, if any
        error_description: Description returned by the token endpoint, if any
    """

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
    ):
        self.error = error
        self.error_description = error_description
        super().__init__(message)


class TokenExchangeError(TokenError):
    """Raised when authorization code to token exchange fails."""

    pass


class TokenRefreshError(TokenError):
    """Raised when token refresh fails."""

    pass


class TokenRevocationError(TokenError):
    """Raised when revoking a single token fails."""

    pass


class TokenExpiredError(TokenError):
    """Raised when the access token expired and no refresh token is held."""

    pass


class UnauthenticatedError(TokenError):
    """Raised when a token is requested before any authentication happened."""

    pass

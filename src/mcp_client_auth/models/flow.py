"""Authorization flow models for OAuth 2.1.

Contains models for authorization requests, callback handling and the
states a single authorization attempt moves through.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode

from mcp_client_auth.models.security import PKCEParameters


class FlowState(str, Enum):
    """Progress of one authorization code flow attempt."""

    IDLE = "idle"
    REQUEST_BUILT = "request_built"
    AWAITING_CALLBACK = "awaiting_callback"
    CODE_RECEIVED = "code_received"
    STATE_MISMATCH = "state_mismatch"
    SERVER_ERROR = "server_error"
    TIMED_OUT = "timed_out"
    TOKEN_EXCHANGED = "token_exchanged"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthorizationRequest:
    """A single-use authorization request.

    The code_verifier stays on this side: it is sent to the token endpoint
    during the exchange and never appears in the authorization URL.
    """

    url: str
    state: str
    code_verifier: str

    @classmethod
    def build(
        cls,
        authorization_endpoint: str,
        client_id: str,
        redirect_uri: str,
        pkce: PKCEParameters,
        state: str,
        scope: str | None = None,
    ) -> AuthorizationRequest:
        """Build the complete authorization URL for a PKCE flow."""
        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": pkce.code_challenge_method,
            "state": state,
        }
        if scope:
            params["scope"] = scope

        separator = "&" if "?" in authorization_endpoint else "?"
        return cls(
            url=f"{authorization_endpoint}{separator}{urlencode(params)}",
            state=state,
            code_verifier=pkce.code_verifier,
        )


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class AuthStatus:
    """Result of asking whether a server needs authentication.

    authorization_request is only set when authentication is required and
    no usable token is held.
    """

    is_required: bool
    is_authenticated: bool
    authorization_request: AuthorizationRequest | None = None

"""Token models.

StoredToken is what a session holds and persists. TokenEndpointRequest
describes one form POST to the token or revocation endpoint, and
TokenResponse is the parsed answer of the token endpoint (RFC 6749 Section 5).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from pydantic import BaseModel


class StoredToken(BaseModel):
    """Access token, optional refresh token and absolute expiry.

    Mutable so a refresh can update it in place. expires_at is a Unix
    timestamp; None means the server gave no lifetime and the token is
    treated as non-expiring.
    """

    model_config = {"extra": "ignore", "validate_assignment": True}

    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None
    token_type: str | None = "Bearer"
    scope: str | None = None

    def is_valid(self, buffer_seconds: float = 300.0, now: float | None = None) -> bool:
        """True while now is earlier than expires_at minus the buffer."""
        if self.expires_at is None:
            return True
        current = time.time() if now is None else now
        return current < self.expires_at - buffer_seconds

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)


@dataclass(frozen=True)
class TokenEndpointRequest:
    """A form-encoded request authenticated by client_id (and secret, if any).

    Use the constructors for the three grants this client sends rather than
    building params by hand.
    """

    url: str
    params: dict[str, str] = field(default_factory=dict)
    client_id: str = ""
    client_secret: str | None = None

    @classmethod
    def authorization_code(
        cls,
        token_endpoint: str,
        code: str,
        redirect_uri: str,
        code_verifier: str,
        client_id: str,
        client_secret: str | None = None,
    ) -> TokenEndpointRequest:
        """RFC 6749 Section 4.1.3 with the RFC 7636 code_verifier."""
        return cls(
            url=token_endpoint,
            params={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
            },
            client_id=client_id,
            client_secret=client_secret,
        )

    @classmethod
    def refresh(
        cls,
        token_endpoint: str,
        refresh_token: str,
        client_id: str,
        client_secret: str | None = None,
    ) -> TokenEndpointRequest:
        """RFC 6749 Section 6."""
        return cls(
            url=token_endpoint,
            params={"grant_type": "refresh_token", "refresh_token": refresh_token},
            client_id=client_id,
            client_secret=client_secret,
        )

    @classmethod
    def revocation(
        cls,
        revocation_endpoint: str,
        token: str,
        token_type_hint: str,
        client_id: str,
        client_secret: str | None = None,
    ) -> TokenEndpointRequest:
        """RFC 7009 Section 2.1."""
        return cls(
            url=revocation_endpoint,
            params={"token": token, "token_type_hint": token_type_hint},
            client_id=client_id,
            client_secret=client_secret,
        )

    def to_form_data(self) -> dict[str, str]:
        data = {**self.params, "client_id": self.client_id}
        if self.client_secret:
            data["client_secret"] = self.client_secret
        return data


class TokenResponse(BaseModel):
    """Token endpoint answer, success (Section 5.1) or error (Section 5.2)."""

    model_config = {"extra": "ignore"}

    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        return self.error is not None

    def describe_error(self) -> str:
        return self.error_description or self.error or "unknown_error"

    def calculate_expires_at(self, now: float | None = None) -> float | None:
        """Turn the relative expires_in into an absolute timestamp."""
        if self.expires_in is None:
            return None
        return (time.time() if now is None else now) + self.expires_in

    def to_stored_token(self, now: float | None = None) -> StoredToken:
        """Build the StoredToken for a successful response.

        Raises:
            ValueError: If this is an error response
        """
        if not self.is_success():
            raise ValueError(
                f"Cannot store a failed token response: {self.describe_error()}"
            )

        return StoredToken(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.calculate_expires_at(now),
            token_type=self.token_type,
            scope=self.scope,
        )

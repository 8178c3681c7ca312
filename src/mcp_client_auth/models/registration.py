"""Client registration models for OAuth 2.0 Dynamic Client Registration.

Contains models for client metadata (RFC 7591) and the resulting credentials.
"""

from __future__ import annotations

import time

from pydantic import BaseModel, Field, field_validator

from mcp_client_auth.services.security import validate_redirect_uri


class ClientMetadata(BaseModel):
    """OAuth 2.0 Client Metadata for dynamic registration (RFC 7591)."""

    client_name: str
    redirect_uris: list[str] = Field(min_length=1)

    # OAuth 2.1 public client
    grant_types: list[str] = Field(default=["authorization_code", "refresh_token"])
    response_types: list[str] = Field(default=["code"])
    token_endpoint_auth_method: str = "none"

    scope: str | None = None

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v: list[str]) -> list[str]:
        """Validate redirect URIs meet OAuth 2.1 security requirements."""
        for uri in v:
            if not validate_redirect_uri(uri):
                raise ValueError(f"Redirect URI must use HTTPS or localhost: {uri}")
        return v


class ClientCredentials(BaseModel):
    """OAuth 2.0 client identity, pre-configured or from a registration response.

    This is what gets persisted next to the token so later runs can skip
    registration.
    """

    model_config = {"extra": "ignore"}

    client_id: str
    client_secret: str | None = None  # None for public clients
    client_secret_expires_at: int | None = None

    # Not persisted; tells apart caller-supplied from registered credentials
    preconfigured: bool = Field(default=False, exclude=True)

    def is_expired(self, now: float | None = None) -> bool:
        """Check if the client secret has expired.

        RFC 7591 uses 0 for "never expires".
        """
        if not self.client_secret_expires_at:
            return False
        current = time.time() if now is None else now
        return current >= self.client_secret_expires_at

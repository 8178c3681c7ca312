"""Discovery-related models for OAuth 2.1 server metadata.

Contains the Authorization Server Metadata model (RFC 8414) and the
conventional endpoint layout used when a server does not publish one.
"""

from __future__ import annotations

from pydantic import BaseModel

# Conventional endpoint paths, relative to the authorization base URL
DEFAULT_AUTHORIZE_PATH = "/authorize"
DEFAULT_TOKEN_PATH = "/token"
DEFAULT_REGISTER_PATH = "/register"


class ServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414).

    Only the endpoints needed for the authorization code flow are required.
    MCP servers frequently omit capability lists, so they are all optional.
    """

    model_config = {"frozen": True}

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str | None = None

    response_types_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None

    # Optional but commonly used
    revocation_endpoint: str | None = None
    scopes_supported: list[str] | None = None

    @classmethod
    def from_base_url(cls, auth_base_url: str) -> ServerMetadata:
        """Synthesize metadata from the conventional MCP endpoint paths."""
        base = auth_base_url.rstrip("/")
        return cls(
            issuer=base,
            authorization_endpoint=f"{base}{DEFAULT_AUTHORIZE_PATH}",
            token_endpoint=f"{base}{DEFAULT_TOKEN_PATH}",
            registration_endpoint=f"{base}{DEFAULT_REGISTER_PATH}",
        )

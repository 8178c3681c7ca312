"""Configuration for the MCP OAuth client.

All tunables live on OAuthOptions. Values can be passed directly or pulled
from MCP_OAUTH_* environment variables (a .env file is honoured).
"""

from __future__ import annotations

import os
from typing import Any
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

from mcp_client_auth.services.security import validate_redirect_uri

DEFAULT_REDIRECT_URI = "http://localhost:3334/callback"
DEFAULT_PROTOCOL_VERSION = "2024-11-05"
DEFAULT_TOKEN_PATH = ".mcp-token.json"

ENV_PREFIX = "MCP_OAUTH_"
_ENV_FIELDS = (
    "server_url",
    "client_id",
    "client_secret",
    "redirect_uri",
    "client_name",
    "protocol_version",
    "token_path",
    "scope",
    "revocation_endpoint",
)


class OAuthOptions(BaseModel):
    """Settings for authenticating against one MCP server."""

    server_url: str
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    client_name: str = "MCP Client"
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    token_path: str = DEFAULT_TOKEN_PATH
    scope: str | None = None
    # Used when discovery does not advertise a revocation endpoint
    revocation_endpoint: str | None = None

    # Timeouts in seconds
    discovery_timeout: float = 5.0
    probe_timeout: float = 5.0
    http_timeout: float = 30.0
    callback_timeout: float = 300.0

    expiry_buffer_seconds: float = 300.0

    @field_validator("server_url")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"server_url must be an absolute HTTP(S) URL: {v}")
        return v

    @field_validator("redirect_uri")
    @classmethod
    def validate_redirect(cls, v: str) -> str:
        if not validate_redirect_uri(v):
            raise ValueError(f"Redirect URI must use HTTPS or localhost: {v}")
        return v

    @property
    def auth_base_url(self) -> str:
        """Authorization base URL: the server URL with its path removed."""
        parsed = urlparse(self.server_url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @classmethod
    def from_env(cls, **overrides: Any) -> OAuthOptions:
        """Build options from MCP_OAUTH_* variables, then apply overrides."""
        load_dotenv()

        values: dict[str, Any] = {}
        for name in _ENV_FIELDS:
            value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if value:
                values[name] = value

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

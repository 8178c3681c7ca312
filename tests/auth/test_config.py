import pytest
from pydantic import ValidationError

from mcp_client_auth.config import DEFAULT_REDIRECT_URI, OAuthOptions
from mcp_client_auth.models.discovery import ServerMetadata


class TestOAuthOptions:
    def test_defaults(self):
        options = OAuthOptions(server_url="https://mcp.example.com/v1/sse")

        assert options.redirect_uri == DEFAULT_REDIRECT_URI
        assert options.protocol_version == "2024-11-05"
        assert options.expiry_buffer_seconds == 300.0
        assert options.auth_base_url == "https://mcp.example.com"

    def test_auth_base_url_keeps_port(self):
        options = OAuthOptions(server_url="http://localhost:8080/mcp")

        assert options.auth_base_url == "http://localhost:8080"

    @pytest.mark.parametrize(
        "redirect_uri",
        ["http://evil.example.com/callback", "ftp://localhost/callback"],
    )
    def test_insecure_redirect_rejected(self, redirect_uri):
        with pytest.raises(ValidationError):
            OAuthOptions(server_url="https://mcp.example.com", redirect_uri=redirect_uri)

    def test_relative_server_url_rejected(self):
        with pytest.raises(ValidationError):
            OAuthOptions(server_url="/mcp")

    def test_from_env(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("MCP_OAUTH_SERVER_URL", "https://env.example.com/mcp")
        monkeypatch.setenv("MCP_OAUTH_CLIENT_ID", "env-client")
        monkeypatch.setenv("MCP_OAUTH_SCOPE", "read")

        # Act
        options = OAuthOptions.from_env(client_id="override", client_secret=None)

        # Assert
        assert options.server_url == "https://env.example.com/mcp"
        assert options.client_id == "override"
        assert options.client_secret is None
        assert options.scope == "read"


class TestServerMetadataFallback:
    def test_conventional_endpoints(self):
        metadata = ServerMetadata.from_base_url("https://mcp.example.com/")

        assert metadata.issuer == "https://mcp.example.com"
        assert metadata.authorization_endpoint == "https://mcp.example.com/authorize"
        assert metadata.token_endpoint == "https://mcp.example.com/token"
        assert metadata.registration_endpoint == "https://mcp.example.com/register"
        assert metadata.revocation_endpoint is None

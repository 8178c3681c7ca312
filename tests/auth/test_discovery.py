"""Tests for authorization server metadata resolution.

Covers the discovery document fetch and the fallback to conventional
endpoints when a server does not publish one.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx

from mcp_client_auth.models.discovery import ServerMetadata
from mcp_client_auth.primitives.discovery import MetadataResolver

ORIGIN = "https://mcp.example.com"

FALLBACK = {
    "issuer": ORIGIN,
    "authorization_endpoint": f"{ORIGIN}/authorize",
    "token_endpoint": f"{ORIGIN}/token",
    "registration_endpoint": f"{ORIGIN}/register",
}


def metadata_response(status_code: int, text: str) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if status_code >= 400:
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "error", request=MagicMock(), response=response
        )
    return response


class TestSuccessfulDiscovery:
    def setup_method(self):
        # Arrange
        self.resolver = MetadataResolver(ORIGIN, "2024-11-05")
        self.resolver._http_client = AsyncMock()

    async def test_uses_published_metadata(self):
        # Arrange
        self.resolver._http_client.get.return_value = metadata_response(
            200,
            '{"issuer": "https://auth.example.com",'
            ' "authorization_endpoint": "https://auth.example.com/oauth/authorize",'
            ' "token_endpoint": "https://auth.example.com/oauth/token",'
            ' "revocation_endpoint": "https://auth.example.com/oauth/revoke",'
            ' "code_challenge_methods_supported": ["S256"]}',
        )

        # Act
        metadata = await self.resolver.resolve()

        # Assert
        assert metadata.issuer == "https://auth.example.com"
        assert metadata.authorization_endpoint == "https://auth.example.com/oauth/authorize"
        assert metadata.token_endpoint == "https://auth.example.com/oauth/token"
        assert metadata.registration_endpoint is None
        assert metadata.revocation_endpoint == "https://auth.example.com/oauth/revoke"

    async def test_request_targets_well_known_path_with_protocol_header(self):
        # Arrange
        self.resolver._http_client.get.return_value = metadata_response(
            200, '{"issuer": "x", "authorization_endpoint": "a", "token_endpoint": "t"}'
        )

        # Act
        await self.resolver.resolve()

        # Assert
        call_args = self.resolver._http_client.get.call_args
        assert call_args[0][0] == f"{ORIGIN}/.well-known/oauth-authorization-server"
        assert call_args[1]["headers"]["MCP-Protocol-Version"] == "2024-11-05"
        assert call_args[1]["timeout"] == 5.0

    async def test_result_is_cached_until_reset(self):
        # Arrange
        self.resolver._http_client.get.return_value = metadata_response(
            200, '{"issuer": "x", "authorization_endpoint": "a", "token_endpoint": "t"}'
        )

        # Act
        first = await self.resolver.resolve()
        second = await self.resolver.resolve()

        # Assert
        assert first is second
        assert self.resolver._http_client.get.await_count == 1

        # Act - reset forces a new fetch
        self.resolver.reset()
        await self.resolver.resolve()

        assert self.resolver._http_client.get.await_count == 2


class TestDiscoveryFallback:
    def setup_method(self):
        # Arrange
        self.resolver = MetadataResolver(ORIGIN + "/", "2024-11-05")
        self.resolver._http_client = AsyncMock()

    async def test_network_error_synthesizes_default_endpoints(self):
        # Arrange
        self.resolver._http_client.get.side_effect = httpx.ConnectError(
            "Connection failed"
        )

        # Act
        metadata = await self.resolver.resolve()

        # Assert
        assert metadata.model_dump(exclude_none=True) == FALLBACK

    async def test_timeout_falls_back(self):
        # Arrange
        self.resolver._http_client.get.side_effect = httpx.ReadTimeout("too slow")

        # Act
        metadata = await self.resolver.resolve()

        # Assert
        assert metadata.token_endpoint == f"{ORIGIN}/token"

    async def test_non_2xx_falls_back(self):
        # Arrange
        self.resolver._http_client.get.return_value = metadata_response(404, "Not Found")

        # Act
        metadata = await self.resolver.resolve()

        # Assert
        assert metadata == ServerMetadata(**FALLBACK)

    async def test_malformed_body_falls_back(self):
        # Arrange
        self.resolver._http_client.get.return_value = metadata_response(
            200, "<html>not json</html>"
        )

        # Act
        metadata = await self.resolver.resolve()

        # Assert
        assert metadata.authorization_endpoint == f"{ORIGIN}/authorize"

    async def test_incomplete_document_falls_back(self):
        # Arrange - token_endpoint missing
        self.resolver._http_client.get.return_value = metadata_response(
            200, '{"issuer": "x", "authorization_endpoint": "a"}'
        )

        # Act
        metadata = await self.resolver.resolve()

        # Assert
        assert metadata.registration_endpoint == f"{ORIGIN}/register"

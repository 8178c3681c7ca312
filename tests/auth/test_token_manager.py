from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from mcp_client_auth.models.errors import TokenError, TokenRevocationError
from mcp_client_auth.models.tokens import TokenEndpointRequest
from mcp_client_auth.services.tokens import OAuth2TokenManager

TOKEN_ENDPOINT = "https://auth.example.com/token"


def json_response(status_code: int, data) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = data
    return response


class TestCodeExchange:
    def setup_method(self):
        # Arrange
        self.token_manager = OAuth2TokenManager()
        self.token_manager._http_client = AsyncMock()
        self.request = TokenEndpointRequest.authorization_code(
            token_endpoint=TOKEN_ENDPOINT,
            code="auth-code",
            redirect_uri="http://localhost:3334/callback",
            client_id="abc",
            code_verifier="v" * 64,
        )

    async def test_successful_exchange(self):
        # Arrange
        self.token_manager._http_client.post.return_value = json_response(
            200,
            {
                "access_token": "at",
                "token_type": "Bearer",
                "expires_in": 3600,
                "refresh_token": "rt",
            },
        )

        # Act
        token_response = await self.token_manager.exchange_code_for_token(self.request)

        # Assert
        assert token_response.is_success()
        assert token_response.access_token == "at"
        assert token_response.refresh_token == "rt"

        call_args = self.token_manager._http_client.post.call_args
        assert call_args[0][0] == TOKEN_ENDPOINT
        assert call_args[1]["data"] == {
            "grant_type": "authorization_code",
            "code": "auth-code",
            "redirect_uri": "http://localhost:3334/callback",
            "client_id": "abc",
            "code_verifier": "v" * 64,
        }
        assert (
            call_args[1]["headers"]["Content-Type"]
            == "application/x-www-form-urlencoded"
        )

    async def test_error_response_is_returned_not_raised(self):
        # Arrange
        self.token_manager._http_client.post.return_value = json_response(
            400, {"error": "invalid_grant", "error_description": "Code expired"}
        )

        # Act
        token_response = await self.token_manager.exchange_code_for_token(self.request)

        # Assert
        assert token_response.is_error()
        assert token_response.error == "invalid_grant"
        assert token_response.describe_error() == "Code expired"

    async def test_error_without_code_gets_default(self):
        # Arrange
        self.token_manager._http_client.post.return_value = json_response(500, {})

        # Act
        token_response = await self.token_manager.exchange_code_for_token(self.request)

        # Assert
        assert token_response.error == "unknown_error"

    async def test_success_without_access_token_raises(self):
        # Arrange
        self.token_manager._http_client.post.return_value = json_response(
            200, {"token_type": "Bearer"}
        )

        # Act & Assert
        with pytest.raises(TokenError, match="access_token"):
            await self.token_manager.exchange_code_for_token(self.request)

    async def test_network_error_raises(self):
        # Arrange
        self.token_manager._http_client.post.side_effect = httpx.ConnectError("down")

        # Act & Assert
        with pytest.raises(TokenError, match="HTTP error during token exchange"):
            await self.token_manager.exchange_code_for_token(self.request)


class TestRefresh:
    async def test_refresh_sends_refresh_grant(self):
        # Arrange
        token_manager = OAuth2TokenManager()
        token_manager._http_client = AsyncMock()
        token_manager._http_client.post.return_value = json_response(
            200, {"access_token": "new", "expires_in": 60}
        )
        request = TokenEndpointRequest.refresh(
            token_endpoint=TOKEN_ENDPOINT,
            refresh_token="rt",
            client_id="abc",
            client_secret="shh",
        )

        # Act
        token_response = await token_manager.refresh_access_token(request)

        # Assert
        assert token_response.access_token == "new"
        assert token_manager._http_client.post.call_args[1]["data"] == {
            "grant_type": "refresh_token",
            "refresh_token": "rt",
            "client_id": "abc",
            "client_secret": "shh",
        }


class TestRevocation:
    def setup_method(self):
        # Arrange
        self.token_manager = OAuth2TokenManager()
        self.token_manager._http_client = AsyncMock()
        self.request = TokenEndpointRequest.revocation(
            revocation_endpoint="https://auth.example.com/revoke",
            token="rt",
            token_type_hint="refresh_token",
            client_id="abc",
        )

    async def test_2xx_is_success(self):
        # Arrange
        self.token_manager._http_client.post.return_value = json_response(200, {})

        # Act
        await self.token_manager.revoke_token(self.request)

        # Assert
        assert self.token_manager._http_client.post.call_args[1]["data"] == {
            "token": "rt",
            "token_type_hint": "refresh_token",
            "client_id": "abc",
        }

    async def test_rejection_raises_with_error_fields(self):
        # Arrange
        self.token_manager._http_client.post.return_value = json_response(
            400, {"error": "unsupported_token_type"}
        )

        # Act & Assert
        with pytest.raises(TokenRevocationError) as exc_info:
            await self.token_manager.revoke_token(self.request)

        assert exc_info.value.error == "unsupported_token_type"

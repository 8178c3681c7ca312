import socket

import httpx
import pytest

from mcp_client_auth.models.errors import (
    AuthorizationDeniedError,
    CallbackServerError,
    CallbackTimeoutError,
    StateValidationError,
)
from mcp_client_auth.models.flow import AuthorizationResponse
from mcp_client_auth.primitives.callback import CallbackServer
from mcp_client_auth.primitives.pkce import PKCEManager

EXPECTED_STATE = "expected-state"


def validator(response: AuthorizationResponse) -> str:
    return PKCEManager().validate_authorization_response(response, EXPECTED_STATE)


class TestCallbackServer:
    async def test_receives_code(self):
        # Arrange
        server = CallbackServer("http://127.0.0.1:0/callback", validator)

        async with server:
            url = f"http://127.0.0.1:{server.port}/callback"

            # Act
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    url, params={"code": "auth-code", "state": EXPECTED_STATE}
                )
            code = await server.wait(timeout=5)

        # Assert
        assert response.status_code == 200
        assert "Authentication successful" in response.text
        assert code == "auth-code"
        assert not server.is_running

    async def test_state_mismatch_is_reported(self):
        # Arrange
        server = CallbackServer("http://127.0.0.1:0/callback", validator)

        async with server:
            url = f"http://127.0.0.1:{server.port}/callback"

            # Act
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    url, params={"code": "auth-code", "state": "forged"}
                )

            # Assert
            assert response.status_code == 400
            with pytest.raises(StateValidationError):
                await server.wait(timeout=5)

        assert not server.is_running

    async def test_denial_is_reported_and_closes_listener(self):
        # Arrange
        server = CallbackServer("http://127.0.0.1:0/callback", validator)

        async with server:
            url = f"http://127.0.0.1:{server.port}/callback"

            # Act
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    url, params={"error": "access_denied", "state": EXPECTED_STATE}
                )

            # Assert
            assert response.status_code == 400
            with pytest.raises(AuthorizationDeniedError) as exc_info:
                await server.wait(timeout=5)

        assert exc_info.value.error == "access_denied"
        assert not server.is_running

    async def test_other_paths_are_ignored(self):
        # Arrange
        server = CallbackServer("http://127.0.0.1:0/callback", validator)

        async with server:
            base = f"http://127.0.0.1:{server.port}"

            # Act
            async with httpx.AsyncClient() as client:
                favicon = await client.get(f"{base}/favicon.ico")
                await client.get(
                    f"{base}/callback",
                    params={"code": "auth-code", "state": EXPECTED_STATE},
                )
            code = await server.wait(timeout=5)

        # Assert
        assert favicon.status_code == 404
        assert code == "auth-code"

    async def test_only_first_callback_counts(self):
        # Arrange
        server = CallbackServer("http://127.0.0.1:0/callback", validator)

        async with server:
            url = f"http://127.0.0.1:{server.port}/callback"

            # Act
            async with httpx.AsyncClient() as client:
                await client.get(url, params={"code": "first", "state": EXPECTED_STATE})
                second = await client.get(
                    url, params={"code": "second", "state": EXPECTED_STATE}
                )
            code = await server.wait(timeout=5)

        # Assert
        assert code == "first"
        assert second.status_code == 410

    async def test_timeout_closes_listener(self):
        # Arrange
        server = CallbackServer("http://127.0.0.1:0/callback", validator)

        # Act & Assert
        with pytest.raises(CallbackTimeoutError):
            async with server:
                port = server.port
                await server.wait(timeout=0.05)

        assert not server.is_running
        with pytest.raises(httpx.ConnectError):
            async with httpx.AsyncClient() as client:
                await client.get(f"http://127.0.0.1:{port}/callback")

    async def test_port_in_use(self):
        # Arrange
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]

        server = CallbackServer(f"http://127.0.0.1:{port}/callback", validator)

        # Act & Assert
        try:
            with pytest.raises(CallbackServerError):
                await server.start()
        finally:
            blocker.close()

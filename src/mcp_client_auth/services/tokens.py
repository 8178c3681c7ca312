"""Token and revocation endpoint client.

Error answers from the token endpoint come back as TokenResponse objects so
callers can decide what they mean; only transport failures and unreadable
bodies raise.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from mcp_client_auth.models.errors import TokenError, TokenRevocationError
from mcp_client_auth.models.tokens import TokenEndpointRequest, TokenResponse

logger = logging.getLogger(__name__)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class OAuth2TokenManager:
    """Sends authorization code, refresh and revocation requests.

    All three are form-encoded POSTs (RFC 6749 Section 4.1.3, RFC 7009).
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def exchange_code_for_token(
        self, request: TokenEndpointRequest
    ) -> TokenResponse:
        """Trade an authorization code for tokens.

        Raises:
            TokenError: On network failure or an unreadable response
        """
        response = await self._post(request, "token exchange")
        return self._parse_token_response(response)

    async def refresh_access_token(
        self, request: TokenEndpointRequest
    ) -> TokenResponse:
        """Use a refresh token to obtain a new access token.

        Raises:
            TokenError: On network failure or an unreadable response
        """
        response = await self._post(request, "token refresh")
        return self._parse_token_response(response)

    async def revoke_token(self, request: TokenEndpointRequest) -> None:
        """Revoke one token.

        RFC 7009 Section 2.2: the server answers 200 whether or not the
        token was valid, so any 2xx counts as success.

        Raises:
            TokenRevocationError: If the server rejects the request or is unreachable
        """
        action = f"{request.params.get('token_type_hint', 'token')} revocation"
        response = await self._post(request, action, TokenRevocationError)

        if not 200 <= response.status_code < 300:
            error, description = self._error_fields(response)
            raise TokenRevocationError(
                f"{action} failed ({response.status_code}): {description or error}",
                error=error,
                error_description=description,
            )

    async def _post(
        self,
        request: TokenEndpointRequest,
        action: str,
        error_class: type[TokenError] = TokenError,
    ) -> httpx.Response:
        logger.debug(f"Sending {action} request to {request.url}")
        try:
            return await self._http_client.post(
                request.url, data=request.to_form_data(), headers=FORM_HEADERS
            )
        except httpx.HTTPError as e:
            raise error_class(f"HTTP error during {action}: {e}") from e

    @staticmethod
    def _parse_token_response(response: httpx.Response) -> TokenResponse:
        try:
            payload = response.json()
        except ValueError as e:
            raise TokenError(
                f"Token endpoint returned a non-JSON body (HTTP {response.status_code})"
            ) from e

        if not isinstance(payload, dict):
            raise TokenError("Token endpoint returned JSON that is not an object")

        if response.status_code == 200:
            if "access_token" not in payload:
                raise TokenError("Token response missing required access_token")
        else:
            payload.setdefault("error", "unknown_error")
            logger.warning(
                f"Token endpoint answered {response.status_code}: {payload['error']}"
                f" - {payload.get('error_description', 'no description')}"
            )

        try:
            return TokenResponse.model_validate(payload)
        except ValidationError as e:
            raise TokenError(f"Malformed token response: {e}") from e

    @staticmethod
    def _error_fields(response: httpx.Response) -> tuple[str | None, str | None]:
        try:
            data = response.json()
        except ValueError:
            return None, response.text or None
        if not isinstance(data, dict):
            return None, None
        return data.get("error"), data.get("error_description")

    async def close(self) -> None:
        await self._http_client.aclose()

"""Client identity for a session: configured, remembered or registered.

OAuth2Registration speaks RFC 7591 to a registration endpoint.
ClientRegistrar decides whether that is needed at all.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from mcp_client_auth.models.discovery import ServerMetadata
from mcp_client_auth.models.errors import RegistrationError
from mcp_client_auth.models.registration import ClientCredentials, ClientMetadata
from mcp_client_auth.primitives.discovery import PROTOCOL_VERSION_HEADER

logger = logging.getLogger(__name__)

# RFC 7591 Section 3.2.2 error codes worth a specific message
REGISTRATION_ERROR_MESSAGES = {
    "invalid_client_metadata": "Invalid client metadata",
    "invalid_redirect_uri": "Invalid redirect URI",
    "invalid_software_statement": "Invalid software statement",
    "unapproved_software_statement": "Software statement not approved",
}
STATUS_MESSAGES = {
    401: "Registration endpoint requires an initial access token",
    403: "Registration forbidden by authorization server policy",
}


class OAuth2Registration:
    """RFC 7591 dynamic client registration.

    Any 2xx carrying a client_id is a success; everything else becomes a
    RegistrationError.
    """

    def __init__(self, protocol_version: str | None = None, timeout: float = 30.0):
        self.protocol_version = protocol_version
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def register_client(
        self,
        registration_endpoint: str,
        client_metadata: ClientMetadata,
    ) -> ClientCredentials:
        """POST client_metadata to registration_endpoint.

        Raises:
            RegistrationError: On network failure, rejection or a bad response
        """
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.protocol_version:
            headers[PROTOCOL_VERSION_HEADER] = self.protocol_version

        logger.debug(
            f"Registering client {client_metadata.client_name!r} "
            f"at {registration_endpoint}"
        )
        try:
            response = await self._http_client.post(
                registration_endpoint,
                json=client_metadata.model_dump(exclude_none=True, mode="json"),
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise RegistrationError(f"HTTP error during registration: {e}") from e

        if not 200 <= response.status_code < 300:
            raise self._rejection(response)

        try:
            body = response.json()
        except ValueError as e:
            raise RegistrationError("Registration response is not JSON") from e
        if not isinstance(body, dict) or "client_id" not in body:
            raise RegistrationError("Registration response missing required client_id")

        try:
            credentials = ClientCredentials.model_validate(body)
        except ValidationError as e:
            raise RegistrationError(f"Malformed registration response: {e}") from e

        logger.info(
            f"Registered client {credentials.client_id} at {registration_endpoint}"
        )
        return credentials

    @staticmethod
    def _rejection(response: httpx.Response) -> RegistrationError:
        try:
            body = response.json()
        except ValueError:
            return RegistrationError(
                f"Registration failed with HTTP {response.status_code}: {response.text}"
            )

        if not isinstance(body, dict):
            body = {}
        error = body.get("error", "unknown_error")
        description = body.get("error_description", "No description provided")
        logger.error(
            f"Client registration rejected ({response.status_code}): "
            f"{error} - {description}"
        )

        if error in REGISTRATION_ERROR_MESSAGES:
            prefix = REGISTRATION_ERROR_MESSAGES[error]
            return RegistrationError(f"{prefix}: {description}")
        if response.status_code in STATUS_MESSAGES:
            return RegistrationError(STATUS_MESSAGES[response.status_code])
        return RegistrationError(
            f"Registration failed ({response.status_code}): {error} - {description}"
        )

    async def close(self) -> None:
        await self._http_client.aclose()


class ClientRegistrar:
    """Chooses the client identity for a session.

    Caller-supplied credentials win, then credentials persisted by an earlier
    run, then a fresh dynamic registration. Registration failures are logged
    and fall back to the persisted client, or None when there is none.
    """

    def __init__(
        self,
        registration: OAuth2Registration,
        client_name: str,
        redirect_uri: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        scope: str | None = None,
    ):
        self._registration = registration
        self.client_name = client_name
        self.redirect_uri = redirect_uri
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope

    def client_metadata(self) -> ClientMetadata:
        return ClientMetadata(
            client_name=self.client_name,
            redirect_uris=[self.redirect_uri],
            scope=self.scope,
        )

    async def ensure_client(
        self,
        metadata: ServerMetadata,
        persisted: ClientCredentials | None = None,
    ) -> tuple[ClientCredentials | None, bool]:
        """Resolve the client credentials to use.

        Returns:
            (credentials, newly_registered). credentials is None when no
            client id could be obtained.
        """
        if self.client_id:
            logger.debug(f"Using pre-registered client {self.client_id}")
            return (
                ClientCredentials(
                    client_id=self.client_id,
                    client_secret=self.client_secret,
                    preconfigured=True,
                ),
                False,
            )

        if persisted is not None:
            if not persisted.is_expired():
                logger.debug(f"Reusing stored client {persisted.client_id}")
                return persisted, False
            logger.info(
                f"Client secret for {persisted.client_id} expired, re-registering"
            )

        if not metadata.registration_endpoint:
            logger.warning("Server does not support dynamic client registration")
            return persisted, False

        try:
            credentials = await self._registration.register_client(
                metadata.registration_endpoint, self.client_metadata()
            )
        except RegistrationError as e:
            logger.warning(f"Dynamic client registration failed: {e}")
            # An expired secret is still better than no client at all
            return persisted, False

        return credentials, True

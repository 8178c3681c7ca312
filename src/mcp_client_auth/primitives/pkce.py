"""PKCE generation and authorization callback checks.

The verifier never leaves this process until the code exchange; the
callback must echo the state of the request it answers before its code is
accepted.
"""

from __future__ import annotations

from mcp_client_auth.models.errors import (
    AuthorizationDeniedError,
    MissingCodeError,
    PKCEError,
)
from mcp_client_auth.models.flow import AuthorizationResponse
from mcp_client_auth.models.security import (
    VERIFIER_MAX_LENGTH,
    PKCEParameters,
    s256_challenge,
)
from mcp_client_auth.services.security import random_unreserved, validate_state


class PKCEManager:
    """Creates S256 PKCE parameters and validates the redirect that uses them."""

    verifier_length = VERIFIER_MAX_LENGTH

    def generate_parameters(self) -> PKCEParameters:
        """Generate a fresh verifier and its challenge.

        Raises:
            PKCEError: If the generated parameters are rejected
        """
        try:
            return PKCEParameters.from_verifier(random_unreserved(self.verifier_length))
        except ValueError as e:
            raise PKCEError(f"Failed to generate PKCE parameters: {e}") from e

    def validate_authorization_response(
        self, response: AuthorizationResponse, expected_state: str
    ) -> str:
        """Validate a callback and return its authorization code.

        State is checked first, so an error response with a foreign state is
        reported as a mismatch rather than as a denial.

        Raises:
            StateValidationError: State missing or different from expected
            AuthorizationDeniedError: Server redirected back with an error
            MissingCodeError: Neither error nor code present
        """
        validate_state(expected_state, response.state)

        if response.is_error():
            raise AuthorizationDeniedError(response.error, response.error_description)

        if response.code is None:
            raise MissingCodeError("Callback carried neither a code nor an error")

        return response.code

    @staticmethod
    def generate_code_challenge(code_verifier: str) -> str:
        return s256_challenge(code_verifier)

"""Randomness and URI checks shared by the authorization flow.

State values and PKCE verifiers are drawn from the RFC 3986 unreserved
alphabet so they can be placed in a URL without escaping.
"""

from __future__ import annotations

import secrets
import string
from urllib.parse import urlparse

from mcp_client_auth.models.errors import StateValidationError

UNRESERVED_CHARS = string.ascii_letters + string.digits + "-._~"
STATE_LENGTH = 32
LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


def random_unreserved(length: int) -> str:
    return "".join(secrets.choice(UNRESERVED_CHARS) for _ in range(length))


def generate_state() -> str:
    """A fresh CSRF token binding a callback to its authorization request."""
    return random_unreserved(STATE_LENGTH)


def validate_state(expected: str, actual: str | None) -> None:
    """Compare the returned state with the one we sent, in constant time.

    Raises:
        StateValidationError: If actual is missing or differs
    """
    if actual is None:
        raise StateValidationError("Callback is missing the state parameter")
    if not secrets.compare_digest(expected.encode(), actual.encode()):
        raise StateValidationError("State parameter mismatch - possible CSRF attack")


def is_loopback_host(hostname: str | None) -> bool:
    return hostname in LOOPBACK_HOSTS


def validate_redirect_uri(uri: str) -> bool:
    """True for HTTPS URIs and for plain HTTP to a loopback host."""
    try:
        parsed = urlparse(uri)
    except ValueError:
        return False
    if parsed.scheme == "https":
        return True
    return parsed.scheme == "http" and is_loopback_host(parsed.hostname)

"""PKCE parameter model (RFC 7636)."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass

S256 = "S256"
VERIFIER_MIN_LENGTH = 43
VERIFIER_MAX_LENGTH = 128


def s256_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(ASCII(code_verifier))) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class PKCEParameters:
    """Verifier and derived challenge for one authorization attempt.

    Only the challenge travels in the authorization URL. The verifier is
    revealed to the token endpoint when the code is exchanged.
    """

    code_verifier: str
    code_challenge: str
    code_challenge_method: str = S256

    @classmethod
    def from_verifier(cls, code_verifier: str) -> PKCEParameters:
        return cls(
            code_verifier=code_verifier,
            code_challenge=s256_challenge(code_verifier),
        )

    def __post_init__(self) -> None:
        length = len(self.code_verifier)
        if not VERIFIER_MIN_LENGTH <= length <= VERIFIER_MAX_LENGTH:
            raise ValueError(
                f"code_verifier must be {VERIFIER_MIN_LENGTH}-{VERIFIER_MAX_LENGTH} "
                f"characters, got {length}"
            )
        if self.code_challenge_method != S256:
            raise ValueError(
                f"Unsupported code challenge method: {self.code_challenge_method}"
            )
        if self.code_challenge != s256_challenge(self.code_verifier):
            raise ValueError("code_challenge was not derived from code_verifier")

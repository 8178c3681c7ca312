"""Persistence for client registration and token state.

A store only loads, saves and clears one PersistedState snapshot. The token
lifecycle manager keeps the live state in memory and mirrors it here.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ValidationError

from mcp_client_auth.models.errors import TokenStorageError
from mcp_client_auth.models.registration import ClientCredentials
from mcp_client_auth.models.tokens import StoredToken

logger = logging.getLogger(__name__)


class PersistedState(BaseModel):
    """Everything that survives a process restart."""

    client: ClientCredentials | None = None
    token: StoredToken | None = None

    def is_empty(self) -> bool:
        return self.client is None and self.token is None


class TokenStore(Protocol):
    """Protocol for token storage implementations.

    clear() must be safe to call on an already empty store.
    """

    async def load(self) -> PersistedState | None:
        """Return the stored state, or None when nothing is stored."""
        ...

    async def save(self, state: PersistedState) -> None:
        """Replace the stored state with a full snapshot.

        Raises:
            TokenStorageError: If the state cannot be written
        """
        ...

    async def clear(self) -> None:
        """Remove any stored state."""
        ...


class JsonFileTokenStore:
    """Stores state as a JSON document on the local filesystem.

    Writes go to a temporary file in the same directory which is then
    renamed over the target, so a crash never leaves a truncated file.
    """

    def __init__(self, path: str | os.PathLike[str] = ".mcp-token.json"):
        self.path = Path(path)

    async def load(self) -> PersistedState | None:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read token store {self.path}: {e}")
            return None

        try:
            state = PersistedState.model_validate_json(content)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed token store {self.path}: {e}")
            return None

        return None if state.is_empty() else state

    async def save(self, state: PersistedState) -> None:
        payload = state.model_dump_json(exclude_none=True, indent=2)
        try:
            self._replace_contents(payload)
        except OSError as e:
            raise TokenStorageError(
                f"Could not write token store {self.path}: {e}"
            ) from e

        logger.debug(f"Saved token state to {self.path}")

    async def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise TokenStorageError(
                f"Could not clear token store {self.path}: {e}"
            ) from e
        logger.debug(f"Cleared token store {self.path}")

    def _replace_contents(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class InMemoryTokenStore:
    """Keeps state in process memory; useful for tests and short-lived tools."""

    def __init__(self, state: PersistedState | None = None):
        self._state = state.model_copy(deep=True) if state else None

    async def load(self) -> PersistedState | None:
        if self._state is None:
            return None
        return self._state.model_copy(deep=True)

    async def save(self, state: PersistedState) -> None:
        self._state = state.model_copy(deep=True)

    async def clear(self) -> None:
        self._state = None

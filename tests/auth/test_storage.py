import json
import os
import stat

import pytest

from mcp_client_auth.models.errors import OAuth2Error, TokenStorageError
from mcp_client_auth.models.registration import ClientCredentials
from mcp_client_auth.models.tokens import StoredToken
from mcp_client_auth.storage import (
    InMemoryTokenStore,
    JsonFileTokenStore,
    PersistedState,
)


def sample_state() -> PersistedState:
    return PersistedState(
        client=ClientCredentials(client_id="abc", client_secret="shh"),
        token=StoredToken(access_token="at", refresh_token="rt", expires_at=1234.5),
    )


class TestJsonFileTokenStore:
    async def test_load_missing_file(self, tmp_path):
        store = JsonFileTokenStore(tmp_path / "token.json")

        assert await store.load() is None

    async def test_save_then_load(self, tmp_path):
        # Arrange
        path = tmp_path / "nested" / "token.json"
        store = JsonFileTokenStore(path)

        # Act
        await store.save(sample_state())
        loaded = await store.load()

        # Assert
        assert loaded == sample_state()
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert [p.name for p in path.parent.iterdir()] == ["token.json"]

    async def test_file_layout(self, tmp_path):
        # Arrange
        path = tmp_path / "token.json"
        store = JsonFileTokenStore(path)

        # Act
        await store.save(
            PersistedState(
                client=ClientCredentials(client_id="abc", preconfigured=True),
                token=StoredToken(access_token="at"),
            )
        )

        # Assert
        data = json.loads(path.read_text())
        assert data == {
            "client": {"client_id": "abc"},
            "token": {"access_token": "at", "token_type": "Bearer"},
        }

    async def test_malformed_file_is_ignored(self, tmp_path):
        # Arrange
        path = tmp_path / "token.json"
        path.write_text("{not json")

        # Act & Assert
        assert await JsonFileTokenStore(path).load() is None

    async def test_empty_state_loads_as_none(self, tmp_path):
        # Arrange
        path = tmp_path / "token.json"
        path.write_text("{}")

        # Act & Assert
        assert await JsonFileTokenStore(path).load() is None

    async def test_clear_is_idempotent(self, tmp_path):
        # Arrange
        path = tmp_path / "token.json"
        store = JsonFileTokenStore(path)
        await store.save(sample_state())

        # Act
        await store.clear()
        await store.clear()

        # Assert
        assert not path.exists()
        assert await store.load() is None

    async def test_write_failure_is_storage_error(self, tmp_path):
        # Arrange
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = JsonFileTokenStore(blocker / "token.json")

        # Act & Assert
        with pytest.raises(TokenStorageError, match="Could not write"):
            await store.save(sample_state())

        with pytest.raises(TokenStorageError, match="Could not clear"):
            await store.clear()

        assert isinstance(TokenStorageError("x"), OAuth2Error)


class TestInMemoryTokenStore:
    async def test_round_trip_is_a_copy(self):
        # Arrange
        store = InMemoryTokenStore()
        state = sample_state()

        # Act
        await store.save(state)
        state.token.access_token = "changed"
        loaded = await store.load()

        # Assert
        assert loaded.token.access_token == "at"

    async def test_clear(self):
        store = InMemoryTokenStore(sample_state())

        await store.clear()

        assert await store.load() is None

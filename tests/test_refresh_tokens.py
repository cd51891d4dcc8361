# Tests for the hashed refresh token store.
# Created: 2026-10-10

import json

import bcrypt
import pytest

from accessgate.oauth2.refresh_tokens import RefreshTokenStore
from accessgate.storage import JsonFileBackend, MemoryBackend

TOKEN_DATA = {"clientId": "client_1", "userId": "user_1", "scopes": ["openid"]}


@pytest.fixture
def store(clock):
    return RefreshTokenStore(MemoryBackend(), clock=clock)


class TestRefreshTokenStore:
    def test_plaintext_is_never_stored(self, store):
        token = store.generate_refresh_token()
        store.store_refresh_token(token, TOKEN_DATA)

        raw = store.backend.load()
        assert token not in json.dumps(raw)
        (entry,) = raw.values()
        assert entry["bcryptHash"].startswith("$2")
        assert entry["clientId"] == "client_1"

    def test_consume_once(self, store):
        token = store.generate_refresh_token()
        store.store_refresh_token(token, TOKEN_DATA)

        data = store.consume_refresh_token(token)
        assert data["userId"] == "user_1"
        assert "bcryptHash" not in data
        assert store.consume_refresh_token(token) is None

    def test_unknown_and_empty_tokens(self, store):
        assert store.consume_refresh_token("f" * 64) is None
        assert store.consume_refresh_token("") is None

    def test_expired_token_is_deleted(self, store, clock):
        token = store.generate_refresh_token()
        store.store_refresh_token(token, TOKEN_DATA, ttl_days=1)
        clock.advance(days=2)

        assert store.consume_refresh_token(token) is None
        assert store.backend.load() == {}

    def test_hash_mismatch_keeps_entry(self, store):
        token = store.generate_refresh_token()
        store.store_refresh_token(token, TOKEN_DATA)

        entries = store.backend.load()
        (key,) = entries
        entries[key]["bcryptHash"] = bcrypt.hashpw(b"other", bcrypt.gensalt(rounds=4)).decode()
        store.backend.save(entries)

        assert store.consume_refresh_token(token) is None
        assert key in store.backend.load()

    def test_store_prunes_expired_entries(self, store, clock):
        store.store_refresh_token(store.generate_refresh_token(), TOKEN_DATA, ttl_days=1)
        clock.advance(days=2)
        store.store_refresh_token(store.generate_refresh_token(), TOKEN_DATA)
        assert len(store.backend.load()) == 1

    def test_revoke(self, store):
        token = store.generate_refresh_token()
        store.store_refresh_token(token, TOKEN_DATA)

        assert store.revoke_refresh_token(token) is True
        assert store.revoke_refresh_token(token) is False
        assert store.consume_refresh_token(token) is None

    def test_revoke_for_client(self, store):
        for _ in range(2):
            store.store_refresh_token(store.generate_refresh_token(), TOKEN_DATA)
        store.store_refresh_token(
            store.generate_refresh_token(), {**TOKEN_DATA, "clientId": "client_2"}
        )

        assert store.revoke_for_client("client_1") == 2
        (remaining,) = store.backend.load().values()
        assert remaining["clientId"] == "client_2"


def test_file_backend_survives_new_store_instance(tmp_path, clock):
    path = tmp_path / "oauth-refresh-tokens.json"
    first = RefreshTokenStore(JsonFileBackend(path, "tokens"), clock=clock)
    token = first.generate_refresh_token()
    first.store_refresh_token(token, TOKEN_DATA)

    document = json.loads(path.read_text())
    assert set(document) == {"tokens", "metadata"}

    second = RefreshTokenStore(JsonFileBackend(path, "tokens"), clock=clock)
    assert second.consume_refresh_token(token)["clientId"] == "client_1"

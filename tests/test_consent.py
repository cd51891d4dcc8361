# Tests for the OAuth consent store.
# Created: 2026-10-10

import pytest

from accessgate.oauth2.consent import ConsentStore
from accessgate.storage import MemoryBackend


@pytest.fixture
def store(clock):
    return ConsentStore(MemoryBackend(), clock=clock)


class TestConsentStore:
    def test_no_record_means_no_consent(self, store):
        assert not store.has_consent("client_1", "user_1", ["openid"])

    def test_subset_of_granted_scopes(self, store):
        store.grant_consent("client_1", "user_1", ["openid", "profile"])

        assert store.has_consent("client_1", "user_1", ["openid"])
        assert store.has_consent("client_1", "user_1", ["profile", "openid"])
        assert not store.has_consent("client_1", "user_1", ["openid", "email"])

    def test_consent_is_per_client_and_user(self, store):
        store.grant_consent("client_1", "user_1", ["openid"])
        assert not store.has_consent("client_2", "user_1", ["openid"])
        assert not store.has_consent("client_1", "user_2", ["openid"])

    def test_consent_expires(self, store, clock):
        store.grant_consent("client_1", "user_1", ["openid"])
        clock.advance(days=91)
        assert not store.has_consent("client_1", "user_1", ["openid"])

    def test_regrant_replaces_scopes_and_expiry(self, store, clock):
        store.grant_consent("client_1", "user_1", ["openid", "email"])
        clock.advance(days=80)
        record = store.grant_consent("client_1", "user_1", ["openid"])
        clock.advance(days=20)

        assert record["scopes"] == ["openid"]
        assert store.has_consent("client_1", "user_1", ["openid"])
        assert not store.has_consent("client_1", "user_1", ["email"])

    def test_revoke(self, store):
        store.grant_consent("client_1", "user_1", ["openid"])
        assert store.revoke_consent("client_1", "user_1") is True
        assert store.revoke_consent("client_1", "user_1") is False
        assert not store.has_consent("client_1", "user_1", ["openid"])

    def test_list_consents_skips_expired(self, store, clock):
        store.grant_consent("client_1", "user_1", ["openid"], ttl_days=1)
        store.grant_consent("client_2", "user_1", ["openid"])
        store.grant_consent("client_2", "user_2", ["openid"])
        clock.advance(days=2)

        consents = store.list_consents("user_1")
        assert [c["clientId"] for c in consents] == ["client_2"]

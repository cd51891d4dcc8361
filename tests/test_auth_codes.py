# Tests for the in-memory authorization code store.
# Created: 2026-10-10

import asyncio
import json

import pytest

from accessgate import lifecycle
from accessgate.oauth2.codes import AuthorizationCodeStore
from accessgate.security.audit import AuditLogger

CODE_DATA = {"clientId": "client_1", "userId": "user_1", "scopes": ["openid"]}


@pytest.fixture
def store(clock):
    return AuthorizationCodeStore(clock=clock)


class TestConsumeCode:
    def test_generate_code_is_64_hex_chars(self, store):
        code = store.generate_code()
        assert len(code) == 64
        int(code, 16)

    def test_code_is_single_use(self, store):
        store.store_code("abc", CODE_DATA)
        assert store.consume_code("abc") == CODE_DATA
        assert store.consume_code("abc") is None
        assert len(store) == 0

    def test_bookkeeping_fields_are_not_returned(self, store):
        store.store_code("abc", CODE_DATA)
        data = store.consume_code("abc")
        assert "expiresAt" not in data
        assert "used" not in data

    def test_unknown_code(self, store):
        assert store.consume_code("nope") is None

    def test_valid_just_before_expiry(self, store, clock):
        store.store_code("abc", CODE_DATA)
        clock.advance(minutes=9, seconds=59)
        assert store.consume_code("abc") is not None

    def test_expired_code_is_rejected_and_removed(self, store, clock):
        store.store_code("abc", CODE_DATA)
        clock.advance(minutes=11)
        assert store.consume_code("abc") is None
        assert len(store) == 0

    def test_used_entry_is_treated_as_replay(self, clock, tmp_path):
        audit = AuditLogger(tmp_path / "audit.jsonl")
        entries = {"abc": {**CODE_DATA, "used": True, "expiresAt": None}}
        store = AuthorizationCodeStore(entries, clock=clock, audit=audit)

        assert store.consume_code("abc") is None
        assert "abc" not in entries

        event = json.loads((tmp_path / "audit.jsonl").read_text().splitlines()[-1])
        assert event["action"] == "oauth_code_replay"
        assert event["severity"] == "alert"


class TestSweep:
    def test_sweep_drops_only_expired(self, store, clock):
        store.store_code("old-1", CODE_DATA)
        store.store_code("old-2", CODE_DATA)
        clock.advance(minutes=11)
        store.store_code("fresh", CODE_DATA)

        assert store.sweep() == 2
        assert len(store) == 1
        assert store.consume_code("fresh") is not None

    @pytest.mark.asyncio
    async def test_background_sweeper(self, store, clock):
        store.store_code("old", CODE_DATA)
        clock.advance(minutes=11)

        store.start_sweeper(interval=0.01)
        assert store.sweeper_running
        await asyncio.sleep(0.1)
        assert len(store) == 0

        await store.stop_sweeper()
        assert not store.sweeper_running

    @pytest.mark.asyncio
    async def test_sweeper_stops_on_lifecycle_shutdown(self, store):
        store.start_sweeper(interval=60)
        await lifecycle.shutdown_all()
        assert not store.sweeper_running

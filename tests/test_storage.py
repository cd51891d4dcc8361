# Tests for the JSON store backends and expiry helpers.
# Created: 2026-10-10

import json
import os
import stat
from datetime import UTC, datetime, timedelta

from accessgate.storage import (
    JsonFileBackend,
    MemoryBackend,
    atomic_write_json,
    is_expired,
    parse_timestamp,
    prune_expired,
)

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


class TestExpiry:
    def test_parse_timestamp_accepts_z_suffix_and_naive(self):
        assert parse_timestamp("2026-10-01T12:00:00Z") == NOW
        assert parse_timestamp("2026-10-01T12:00:00") == NOW
        assert parse_timestamp(None) is None

    def test_is_expired(self):
        past = (NOW - timedelta(seconds=1)).isoformat()
        future = (NOW + timedelta(seconds=1)).isoformat()
        assert is_expired({"expiresAt": past}, NOW)
        assert not is_expired({"expiresAt": future}, NOW)
        assert not is_expired({}, NOW)

    def test_prune_expired(self):
        entries = {
            "old": {"expiresAt": (NOW - timedelta(days=1)).isoformat()},
            "new": {"expiresAt": (NOW + timedelta(days=1)).isoformat()},
            "forever": {},
        }
        assert prune_expired(entries, NOW) == 1
        assert set(entries) == {"new", "forever"}


class TestAtomicWrite:
    def test_writes_private_file_without_leftovers(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        atomic_write_json(path, {"a": 1})

        assert json.loads(path.read_text()) == {"a": 1}
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert [p.name for p in path.parent.iterdir()] == ["store.json"]


class TestJsonFileBackend:
    def test_missing_file_is_empty(self, tmp_path):
        assert JsonFileBackend(tmp_path / "none.json", "clients").load() == {}

    def test_round_trip_with_metadata(self, tmp_path):
        backend = JsonFileBackend(tmp_path / "clients.json", "clients")
        backend.save({"c1": {"name": "x"}})

        document = json.loads((tmp_path / "clients.json").read_text())
        assert document["clients"] == {"c1": {"name": "x"}}
        assert document["metadata"]["version"] == "1.0.0"
        assert "lastUpdated" in document["metadata"]
        assert backend.load() == {"c1": {"name": "x"}}

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "clients.json"
        path.write_text("{not json")
        assert JsonFileBackend(path, "clients").load() == {}

    def test_wrong_shape_reads_as_empty(self, tmp_path):
        path = tmp_path / "clients.json"
        path.write_text(json.dumps(["a", "b"]))
        assert JsonFileBackend(path, "clients").load() == {}
        path.write_text(json.dumps({"clients": []}))
        assert JsonFileBackend(path, "clients").load() == {}


def test_memory_backend_hands_out_copies():
    backend = MemoryBackend({"k": {"v": 1}})
    loaded = backend.load()
    loaded["k"]["v"] = 2
    assert backend.load() == {"k": {"v": 1}}

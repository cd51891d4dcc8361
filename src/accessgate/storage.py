# Persistence backends for the file-backed stores.
# Created: 2026-10-03
#
# Every store follows read-whole-file / mutate / atomic write. A backend
# holds one JSON document of the form {<section>: {key: entry}, metadata}.
# There is no cross-process locking: two server instances writing the same
# file can lose updates. Put a shared backend behind the same interface
# before running more than one replica.

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


def is_expired(entry: dict[str, Any], now: datetime) -> bool:
    expires_at = parse_timestamp(entry.get("expiresAt"))
    return expires_at is not None and expires_at < now


def prune_expired(entries: dict[str, dict[str, Any]], now: datetime) -> int:
    """Drop expired entries in place. Returns the number removed."""
    expired = [k for k, v in entries.items() if is_expired(v, now)]
    for k in expired:
        del entries[k]
    return len(expired)


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to a temp file in the same directory, then rename over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        try:
            os.chmod(tmp_name, 0o600)
        except OSError:
            pass
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class StoreBackend(Protocol):
    """Key-value document storage used by the record stores."""

    def load(self) -> dict[str, Any]: ...

    def save(self, entries: dict[str, Any]) -> None: ...


class MemoryBackend:
    """Process-local backend (tests, ephemeral deployments)."""

    def __init__(self, entries: dict[str, Any] | None = None):
        self._entries: dict[str, Any] = copy.deepcopy(entries) if entries else {}

    def load(self) -> dict[str, Any]:
        return copy.deepcopy(self._entries)

    def save(self, entries: dict[str, Any]) -> None:
        self._entries = copy.deepcopy(entries)


class JsonFileBackend:
    """One JSON file holding ``{section: {...}, "metadata": {...}}``.

    A missing or corrupt file reads as empty; the next save overwrites it.
    Write failures are logged and re-raised.
    """

    def __init__(self, path: Path, section: str, version: str = "1.0.0"):
        self.path = Path(path)
        self.section = section
        self.version = version

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring corrupt store %s: %s", self.path, exc)
            return {}
        except OSError:
            logger.error("Failed to read store %s", self.path, exc_info=True)
            raise
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed store %s", self.path)
            return {}
        entries = data.get(self.section)
        return entries if isinstance(entries, dict) else {}

    def save(self, entries: dict[str, Any]) -> None:
        document = {
            self.section: entries,
            "metadata": {
                "version": self.version,
                "lastUpdated": utcnow().isoformat(),
            },
        }
        try:
            atomic_write_json(self.path, document)
        except OSError:
            logger.error("Failed to save store %s", self.path, exc_info=True)
            raise

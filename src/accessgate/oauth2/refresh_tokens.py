# Refresh token store.
# Created: 2026-10-05
#
# Tokens are never stored in plaintext. Each entry is keyed by the SHA-256
# of the token (O(1) lookup) and also carries a bcrypt hash that must
# verify before the token is honored. Tokens rotate on every use.

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import timedelta
from pathlib import Path
from typing import Any

import bcrypt

from accessgate.security.audit import AuditLogger
from accessgate.storage import (
    Clock,
    JsonFileBackend,
    StoreBackend,
    is_expired,
    prune_expired,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30
BCRYPT_ROUNDS = 10


def _default_backend() -> JsonFileBackend:
    from accessgate.config import get_settings

    path: Path = get_settings().resolved_contents_dir() / "oauth-refresh-tokens.json"
    return JsonFileBackend(path, "tokens")


def _index_key(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class RefreshTokenStore:
    def __init__(
        self,
        backend: StoreBackend | None = None,
        *,
        clock: Clock = utcnow,
        audit: AuditLogger | None = None,
    ):
        self.backend = backend or _default_backend()
        self._clock = clock
        self._audit = audit

    @staticmethod
    def generate_refresh_token() -> str:
        return secrets.token_hex(32)

    def store_refresh_token(
        self, token: str, data: dict[str, Any], ttl_days: int = DEFAULT_TTL_DAYS
    ) -> None:
        now = self._clock()
        entries = self.backend.load()
        pruned = prune_expired(entries, now)
        if pruned:
            logger.debug("Pruned %d expired refresh tokens", pruned)

        hashed = bcrypt.hashpw(token.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
        entries[_index_key(token)] = {
            **data,
            "bcryptHash": hashed.decode("utf-8"),
            "expiresAt": (now + timedelta(days=ttl_days)).isoformat(),
            "createdAt": now.isoformat(),
        }
        self.backend.save(entries)
        logger.info(
            "Stored refresh token for client %s user %s", data.get("clientId"), data.get("userId")
        )

    def consume_refresh_token(self, token: str) -> dict[str, Any] | None:
        """Validate and delete *token*. Returns its data, or None."""
        if not token:
            return None
        key = _index_key(token)
        entries = self.backend.load()
        entry = entries.get(key)
        if entry is None:
            return None

        if is_expired(entry, self._clock()):
            del entries[key]
            self.backend.save(entries)
            logger.info("Refresh token expired for client %s", entry.get("clientId"))
            return None

        stored_hash = entry.get("bcryptHash", "")
        try:
            valid = bcrypt.checkpw(token.encode("utf-8"), stored_hash.encode("utf-8"))
        except ValueError:
            valid = False
        if not valid:
            logger.warning("Refresh token hash mismatch for client %s", entry.get("clientId"))
            return None

        del entries[key]
        self.backend.save(entries)
        return {k: v for k, v in entry.items() if k != "bcryptHash"}

    def revoke_refresh_token(self, token: str) -> bool:
        if not token:
            return False
        key = _index_key(token)
        entries = self.backend.load()
        entry = entries.pop(key, None)
        if entry is None:
            return False
        self.backend.save(entries)
        logger.info("Revoked refresh token for client %s", entry.get("clientId"))
        if self._audit is not None:
            self._audit.record(
                "oauth_refresh_token_revoked",
                f"client:{entry.get('clientId')}",
                actor=entry.get("userId") or "system",
            )
        return True

    def revoke_for_client(self, client_id: str) -> int:
        """Drop every refresh token issued to *client_id* (client deletion)."""
        entries = self.backend.load()
        doomed = [k for k, v in entries.items() if v.get("clientId") == client_id]
        for k in doomed:
            del entries[k]
        if doomed:
            self.backend.save(entries)
        return len(doomed)

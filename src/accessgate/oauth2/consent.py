# OAuth consent store.
# Created: 2026-10-05
#
# Remembers which scopes a user approved for a client so the consent
# screen is shown only when a client asks for something new.

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

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

DEFAULT_TTL_DAYS = 90


def _default_backend() -> JsonFileBackend:
    from accessgate.config import get_settings

    return JsonFileBackend(get_settings().resolved_contents_dir() / "oauth-consent.json", "consents")


def _key(client_id: str, user_id: str) -> str:
    return f"{client_id}:{user_id}"


class ConsentStore:
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

    def has_consent(
        self,
        client_id: str,
        user_id: str,
        scopes: Iterable[str],
        ttl_days: int = DEFAULT_TTL_DAYS,
    ) -> bool:
        """True if an unexpired grant covers every requested scope.

        ``ttl_days`` is accepted for call-site symmetry with grant_consent;
        expiry is decided by the stored ``expiresAt``.
        """
        record = self.backend.load().get(_key(client_id, user_id))
        if record is None or is_expired(record, self._clock()):
            return False
        granted = set(record.get("scopes") or [])
        return set(scopes).issubset(granted)

    def grant_consent(
        self,
        client_id: str,
        user_id: str,
        scopes: Iterable[str],
        ttl_days: int = DEFAULT_TTL_DAYS,
    ) -> dict[str, Any]:
        now = self._clock()
        entries = self.backend.load()
        prune_expired(entries, now)
        record = {
            "clientId": client_id,
            "userId": user_id,
            "scopes": list(dict.fromkeys(scopes)),
            "grantedAt": now.isoformat(),
            "expiresAt": (now + timedelta(days=ttl_days)).isoformat(),
        }
        entries[_key(client_id, user_id)] = record
        self.backend.save(entries)
        logger.info("Consent granted: user %s → client %s %s", user_id, client_id, record["scopes"])
        if self._audit is not None:
            self._audit.record(
                "oauth_consent_granted",
                f"client:{client_id}",
                actor=user_id,
                scopes=record["scopes"],
            )
        return record

    def revoke_consent(self, client_id: str, user_id: str) -> bool:
        entries = self.backend.load()
        if entries.pop(_key(client_id, user_id), None) is None:
            return False
        self.backend.save(entries)
        logger.info("Consent revoked: user %s → client %s", user_id, client_id)
        if self._audit is not None:
            self._audit.record("oauth_consent_revoked", f"client:{client_id}", actor=user_id)
        return True

    def list_consents(self, user_id: str) -> list[dict[str, Any]]:
        now = self._clock()
        return [
            record
            for record in self.backend.load().values()
            if record.get("userId") == user_id and not is_expired(record, now)
        ]

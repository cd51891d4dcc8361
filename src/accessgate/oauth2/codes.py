# Authorization code store.
# Created: 2026-10-05
#
# Codes live in memory for the life of the process (10 minute TTL). A
# restart invalidates outstanding codes; clients simply restart the flow.
# Redemption pops the entry, so exactly one of two concurrent exchanges of
# the same code wins.

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
from collections.abc import MutableMapping
from datetime import timedelta
from typing import Any

from accessgate import lifecycle
from accessgate.security.audit import AuditLogger, AuditSeverity
from accessgate.storage import Clock, is_expired, utcnow

logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=10)
SWEEP_INTERVAL_SECONDS = 300


class AuthorizationCodeStore:
    def __init__(
        self,
        entries: MutableMapping[str, dict[str, Any]] | None = None,
        *,
        ttl: timedelta = CODE_TTL,
        clock: Clock = utcnow,
        audit: AuditLogger | None = None,
    ):
        self._codes: MutableMapping[str, dict[str, Any]] = entries if entries is not None else {}
        self.ttl = ttl
        self._clock = clock
        self._audit = audit
        self._sweeper: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._codes)

    @staticmethod
    def generate_code() -> str:
        return secrets.token_hex(32)

    def store_code(self, code: str, data: dict[str, Any]) -> None:
        entry = dict(data)
        entry["expiresAt"] = (self._clock() + self.ttl).isoformat()
        entry["used"] = False
        self._codes[code] = entry
        logger.debug("Stored authorization code for client %s", data.get("clientId"))

    def consume_code(self, code: str) -> dict[str, Any] | None:
        """Redeem *code* once. Returns the bound data or None."""
        entry = self._codes.get(code)
        if entry is None:
            return None

        if entry.get("used"):
            logger.warning(
                "Authorization code replay detected for client %s", entry.get("clientId")
            )
            self._codes.pop(code, None)
            if self._audit is not None:
                self._audit.record(
                    "oauth_code_replay",
                    f"client:{entry.get('clientId')}",
                    status="denied",
                    severity=AuditSeverity.ALERT,
                )
            return None

        if is_expired(entry, self._clock()):
            self._codes.pop(code, None)
            logger.debug("Authorization code expired for client %s", entry.get("clientId"))
            return None

        entry = self._codes.pop(code, None)
        if entry is None:
            # Lost the race to a concurrent redemption
            return None
        entry["used"] = True
        data = {k: v for k, v in entry.items() if k not in ("expiresAt", "used")}
        return data

    def sweep(self) -> int:
        """Drop expired codes. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, v in self._codes.items() if is_expired(v, now)]
        for k in expired:
            self._codes.pop(k, None)
        if expired:
            logger.debug("Swept %d expired authorization codes", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Background sweeper
    # ------------------------------------------------------------------

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start_sweeper(self, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        """Start the periodic sweep task on the running event loop."""
        if self.sweeper_running:
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_loop(interval), name="auth-code-sweeper"
        )
        lifecycle.register("auth_code_sweeper", shutdown=self.stop_sweeper)

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        lifecycle.unregister("auth_code_sweeper")
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Authorization code sweep failed")

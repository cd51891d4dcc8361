"""
Security audit log.
Created: 2026-10-03

Append-only JSONL record of security-relevant events: client registration
and secret rotation, admin promotion, refresh-token replay, consent changes.
"""

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("audit")


class AuditSeverity(str, Enum):
    INFO = "info"  # Normal operation (token issued, consent granted)
    WARNING = "warning"  # Sensitive change (secret rotated, admin assigned)
    ALERT = "alert"  # Possible attack (code replay, bad client secret)


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    severity: AuditSeverity
    actor: str  # user id, client id, or "system"
    action: str  # e.g. "oauth_client_created", "admin_rescue"
    target: str  # e.g. "client:client_abc", "user:user_123"
    status: str  # "success", "denied", "error"
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        severity: AuditSeverity,
        actor: str,
        action: str,
        target: str,
        status: str,
        **context: Any,
    ) -> "AuditEvent":
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            status=status,
            context=context,
        )


class AuditLogger:
    """
    Append-only audit logger.
    Writes JSON lines to ``<config_dir>/audit.jsonl`` unless a path is given.
    """

    def __init__(self, log_path: Path | None = None):
        if log_path is None:
            from accessgate.config import get_config_dir

            log_path = get_config_dir() / "audit.jsonl"
        self.log_path = log_path
        self._callbacks: list[Callable[[dict], None]] = []

    def on_log(self, callback: Callable[[dict], None]) -> None:
        """Register a callback to be called after each audit log write."""
        self._callbacks.append(callback)

    def log(self, event: AuditEvent) -> None:
        """Write an event. Write failures go to the process logger instead."""
        event_dict = asdict(event)
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event_dict, default=str) + "\n")
        except OSError as e:
            logger.critical("FAILED TO WRITE AUDIT LOG: %s | Event: %s", e, event)
            return
        for cb in self._callbacks:
            try:
                cb(event_dict)
            except Exception:
                logger.warning("Audit callback failed", exc_info=True)

    def record(
        self,
        action: str,
        target: str,
        *,
        actor: str = "system",
        status: str = "success",
        severity: AuditSeverity = AuditSeverity.INFO,
        **context: Any,
    ) -> str:
        """Helper to log a security event. Returns the event id."""
        event = AuditEvent.create(
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            status=status,
            **context,
        )
        self.log(event)
        return event.id


# Singleton
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def reset_audit_logger() -> None:
    global _audit_logger
    _audit_logger = None

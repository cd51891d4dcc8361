# OAuth client registry — create, validate, update, rotate, delete.
# Created: 2026-10-06
#
# Client ids use the format client_<uuid hex>. Only bcrypt hashes of
# secrets are stored; the plaintext secret is returned once at creation
# and once per rotation.
# Storage: <contents>/oauth-clients.json

from __future__ import annotations

import asyncio
import logging
import secrets
import uuid
from datetime import timedelta
from typing import Any, Literal

import bcrypt
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from accessgate.errors import ClientNotFound
from accessgate.security.audit import AuditLogger, AuditSeverity
from accessgate.storage import Clock, JsonFileBackend, StoreBackend, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10
LAST_USED_THROTTLE = timedelta(seconds=60)

UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "scopes",
        "allowedApps",
        "allowedModels",
        "tokenExpirationMinutes",
        "active",
        "metadata",
        "redirectUris",
        "grantTypes",
        "clientType",
        "consentRequired",
    }
)


class OAuthClient(BaseModel):
    """Stored client record. ``client_secret`` holds the bcrypt hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    client_id: str
    name: str
    description: str = ""
    client_secret: str | None = None
    client_type: Literal["confidential", "public"] = "confidential"
    redirect_uris: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(default_factory=lambda: ["client_credentials"])
    consent_required: bool = True
    scopes: list[str] = Field(default_factory=list)
    allowed_apps: list[str] = Field(default_factory=list)
    allowed_models: list[str] = Field(default_factory=list)
    token_expiration_minutes: int = 60
    active: bool = True
    created_at: str
    created_by: str = "system"
    updated_at: str | None = None
    updated_by: str | None = None
    last_used: str | None = None
    last_rotated: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_public(self) -> bool:
        return self.client_type == "public"

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_public(self) -> dict[str, Any]:
        """Record without the secret hash (API responses, listings)."""
        return self.model_dump(by_alias=True, exclude={"client_secret"})


def _default_backend() -> JsonFileBackend:
    from accessgate.config import get_settings

    return JsonFileBackend(get_settings().resolved_contents_dir() / "oauth-clients.json", "clients")


def _hash_secret(secret: str) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode(
        "utf-8"
    )


class OAuthClientStore:
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

    def _record(self, action: str, client_id: str, actor: str, **context: Any) -> None:
        if self._audit is not None:
            severity = context.pop("severity", AuditSeverity.INFO)
            self._audit.record(
                action, f"client:{client_id}", actor=actor, severity=severity, **context
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_client(self, client_id: str) -> OAuthClient | None:
        raw = self.backend.load().get(client_id)
        return OAuthClient.model_validate(raw) if raw else None

    def list_clients(self) -> list[OAuthClient]:
        return [OAuthClient.model_validate(raw) for raw in self.backend.load().values()]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_oauth_client(
        self, data: dict[str, Any], created_by: str = "system"
    ) -> tuple[OAuthClient, str | None]:
        """Register a client. Returns (client, plaintext_secret).

        Public clients get no secret; they authenticate with PKCE alone.
        """
        client_id = f"client_{uuid.uuid4().hex}"
        client_type = data.get("clientType", "confidential")
        plaintext = None if client_type == "public" else secrets.token_hex(32)

        fields = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
        client = OAuthClient.model_validate(
            {
                **fields,
                "id": client_id,
                "clientId": client_id,
                "name": data.get("name") or client_id,
                "clientSecret": _hash_secret(plaintext) if plaintext else None,
                "createdAt": self._clock().isoformat(),
                "createdBy": created_by,
            }
        )

        entries = self.backend.load()
        entries[client_id] = client.to_record()
        self.backend.save(entries)

        logger.info("Created OAuth client %s (%s)", client_id, client.name)
        self._record(
            "oauth_client_created",
            client_id,
            created_by,
            severity=AuditSeverity.WARNING,
            name=client.name,
            scopes=client.scopes,
        )
        return client, plaintext

    def update_oauth_client(
        self, client_id: str, updates: dict[str, Any], updated_by: str = "system"
    ) -> OAuthClient:
        entries = self.backend.load()
        raw = entries.get(client_id)
        if raw is None:
            raise ClientNotFound(client_id)

        changed = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
        ignored = set(updates) - UPDATABLE_FIELDS
        if ignored:
            logger.debug("Ignoring immutable client fields: %s", sorted(ignored))

        previous_type = raw.get("clientType", "confidential")
        raw.update(changed)
        new_type = raw.get("clientType", "confidential")
        if new_type != previous_type:
            # Public clients hold no secret; a new confidential client needs a rotation
            raw["clientSecret"] = None
            logger.info(
                "OAuth client %s changed type %s -> %s; secret cleared",
                client_id,
                previous_type,
                new_type,
            )
        raw["updatedAt"] = self._clock().isoformat()
        raw["updatedBy"] = updated_by
        client = OAuthClient.model_validate(raw)
        entries[client_id] = client.to_record()
        self.backend.save(entries)

        logger.info("Updated OAuth client %s", client_id)
        self._record("oauth_client_updated", client_id, updated_by, fields=sorted(changed))
        return client

    def delete_oauth_client(self, client_id: str, deleted_by: str = "system") -> None:
        entries = self.backend.load()
        if entries.pop(client_id, None) is None:
            raise ClientNotFound(client_id)
        self.backend.save(entries)
        logger.info("Deleted OAuth client %s", client_id)
        self._record(
            "oauth_client_deleted", client_id, deleted_by, severity=AuditSeverity.WARNING
        )

    def rotate_client_secret(self, client_id: str, rotated_by: str = "system") -> tuple[str, str, str]:
        """Replace the secret. Returns (client_id, plaintext_secret, rotated_at).

        The previous secret stops working immediately.
        """
        entries = self.backend.load()
        raw = entries.get(client_id)
        if raw is None:
            raise ClientNotFound(client_id)

        plaintext = secrets.token_hex(32)
        rotated_at = self._clock().isoformat()
        raw["clientSecret"] = _hash_secret(plaintext)
        raw["lastRotated"] = rotated_at
        raw["updatedAt"] = rotated_at
        raw["updatedBy"] = rotated_by
        self.backend.save(entries)

        logger.info("Rotated secret for OAuth client %s", client_id)
        self._record(
            "oauth_client_secret_rotated", client_id, rotated_by, severity=AuditSeverity.WARNING
        )
        return client_id, plaintext, rotated_at

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def validate_client_credentials(self, client_id: str, client_secret: str) -> OAuthClient | None:
        """Return the client if it exists, is active and the secret matches."""
        if not client_id or not client_secret:
            return None
        client = self.get_client(client_id)
        if client is None:
            logger.debug("Unknown OAuth client %s", client_id)
            return None
        if not client.active:
            logger.info("Rejected credentials for inactive client %s", client_id)
            return None
        if not client.client_secret:
            return None

        try:
            valid = bcrypt.checkpw(
                client_secret.encode("utf-8"), client.client_secret.encode("utf-8")
            )
        except ValueError:
            valid = False
        if not valid:
            logger.warning("Invalid secret for OAuth client %s", client_id)
            self._record(
                "oauth_client_auth_failed",
                client_id,
                client_id,
                status="denied",
                severity=AuditSeverity.ALERT,
            )
            return None

        self._schedule_last_used(client_id)
        return client

    def _schedule_last_used(self, client_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.record_last_used(client_id)
            return
        loop.call_soon(self.record_last_used, client_id)

    def record_last_used(self, client_id: str) -> bool:
        """Write ``lastUsed`` unless it was written within the last minute."""
        now = self._clock()
        try:
            entries = self.backend.load()
            raw = entries.get(client_id)
            if raw is None:
                return False
            previous = parse_timestamp(raw.get("lastUsed"))
            if previous is not None and now - previous < LAST_USED_THROTTLE:
                return False
            raw["lastUsed"] = now.isoformat()
            self.backend.save(entries)
        except OSError:
            logger.warning("Could not record lastUsed for client %s", client_id, exc_info=True)
            return False
        return True

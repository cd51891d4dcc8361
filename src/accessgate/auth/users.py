# User persistence and login reconciliation.
# Created: 2026-10-07
#
# Two group sources meet here. Externally asserted groups (from the IdP)
# are recomputed on every login and never written to disk. Internal groups
# are assigned by administrators and are the only groups persisted.
# Storage: <contents>/users.json

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import bcrypt
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from accessgate.auth.admin_rescue import AdminRescue
from accessgate.auth.groups import GroupPermissionResolver, automatic_groups
from accessgate.config import ConfigCache, get_config_cache
from accessgate.errors import (
    AccountDisabled,
    InvalidCredentials,
    LastAdminError,
    SelfSignupDisallowed,
    UserNotFound,
)
from accessgate.security.audit import AuditLogger, AuditSeverity
from accessgate.storage import Clock, JsonFileBackend, StoreBackend, utcnow

logger = logging.getLogger(__name__)

LOCAL_BCRYPT_ROUNDS = 12
# bcrypt only looks at the first 72 bytes of its input
_BCRYPT_MAX_BYTES = 72

_LEGACY_IDENTITY_BLOCKS = {
    "oidcData": "oidc",
    "proxyData": "proxy",
    "teamsData": "teams",
    "ntlmData": "ntlm",
    "ldapData": "ldap",
}


class ExternalIdentity(BaseModel):
    """A link between a user and one external identity provider."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    method: str
    subject: str
    provider: str = ""
    last_provider: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class User(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    username: str
    email: str | None = None
    name: str | None = None
    internal_groups: list[str] = Field(default_factory=list)
    auth_methods: list[str] = Field(default_factory=list)
    identities: list[ExternalIdentity] = Field(default_factory=list)
    active: bool = True
    password_hash: str | None = None
    last_active_date: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy(cls, data: Any) -> Any:
        """Fold ``*Data`` identity blocks and ``additionalGroups`` into the current shape."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        identities = list(data.get("identities") or [])
        for key, method in _LEGACY_IDENTITY_BLOCKS.items():
            block = data.pop(key, None)
            if not isinstance(block, dict) or not block.get("subject"):
                continue
            if any(
                (i.get("method") if isinstance(i, dict) else i.method) == method for i in identities
            ):
                continue
            extra = {k: v for k, v in block.items() if k not in ("subject", "provider")}
            identities.append(
                {
                    "method": method,
                    "subject": block["subject"],
                    "provider": block.get("provider", ""),
                    "extra": extra,
                }
            )
        data["identities"] = identities

        legacy_groups = data.pop("additionalGroups", None) or []
        if legacy_groups:
            internal = list(data.get("internalGroups") or data.get("internal_groups") or [])
            for group_id in legacy_groups:
                if group_id not in internal:
                    internal.append(group_id)
            data.pop("internal_groups", None)
            data["internalGroups"] = internal
        data.pop("groups", None)
        return data

    def identity(self, method: str) -> ExternalIdentity | None:
        for ident in self.identities:
            if ident.method == method:
                return ident
        return None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"password_hash"})


@dataclass
class AuthenticatedUser:
    """Per-session principal. Never persisted."""

    id: str
    name: str | None = None
    email: str | None = None
    username: str | None = None
    groups: list[str] = field(default_factory=list)
    provider: str = ""
    auth_method: str = ""
    external_groups: list[str] = field(default_factory=list)
    internal_groups: list[str] = field(default_factory=list)
    persisted: bool = False
    active: bool = True
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_anonymous(self) -> bool:
        return self.id == "anonymous"


@dataclass
class ExternalLogin:
    """What an identity provider asserted about a principal."""

    subject: str
    provider: str
    auth_method: str = ""
    name: str | None = None
    email: str | None = None
    username: str | None = None
    groups: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.auth_method:
            self.auth_method = auth_method_for_provider(self.provider)


def auth_method_for_provider(provider: str) -> str:
    if provider in ("ntlm", "proxy", "teams", "ldap"):
        return provider
    return "oidc"


def provider_config(platform: Mapping[str, Any], method: str, provider: str) -> dict[str, Any]:
    """Config section for one provider (``oidcAuth.providers[name=...]`` or ``<method>Auth``)."""
    section = platform.get(f"{method}Auth") or {}
    for candidate in section.get("providers") or []:
        if candidate.get("name") == provider:
            return candidate
    return section


def merge_user_groups(external: Iterable[str] | None, internal: Iterable[str] | None) -> list[str]:
    """Ordered union: external groups first, then internal; duplicates dropped."""
    return list(dict.fromkeys([*(external or []), *(internal or [])]))


def _password_material(user_id: str, password: str) -> bytes:
    return f"{user_id}:{password}".encode()[:_BCRYPT_MAX_BYTES]


def _default_backend() -> JsonFileBackend:
    from accessgate.config import get_settings

    return JsonFileBackend(get_settings().resolved_contents_dir() / "users.json", "users")


class UserStore:
    """``users.json``. Reads hit the file on every call and mutations rewrite it."""

    def __init__(self, backend: StoreBackend | None = None):
        self.backend = backend or _default_backend()

    def load(self) -> dict[str, User]:
        return {uid: User.model_validate(raw) for uid, raw in self.backend.load().items()}

    def save(self, users: Mapping[str, User]) -> None:
        self.backend.save({uid: user.to_record() for uid, user in users.items()})

    def all(self) -> list[User]:
        return list(self.load().values())

    def get(self, user_id: str) -> User | None:
        return self.load().get(user_id)

    def put(self, user: User) -> None:
        users = self.load()
        users[user.id] = user
        self.save(users)

    def delete(self, user_id: str) -> bool:
        users = self.load()
        if users.pop(user_id, None) is None:
            return False
        self.save(users)
        return True

    def find_user_by_identifier(self, identifier: str, auth_method: str | None = None) -> User | None:
        """Match username, email, or the subject of any linked identity."""
        if not identifier:
            return None
        for user in self.load().values():
            if auth_method and auth_method not in user.auth_methods and user.identity(auth_method) is None:
                continue
            if user.username == identifier or (user.email and user.email == identifier):
                return user
            for ident in user.identities:
                if auth_method and ident.method != auth_method:
                    continue
                if ident.subject == identifier:
                    return user
        return None


class UserManager:
    def __init__(
        self,
        store: UserStore | None = None,
        resolver: GroupPermissionResolver | None = None,
        config_cache: ConfigCache | None = None,
        *,
        clock: Clock = utcnow,
        audit: AuditLogger | None = None,
    ):
        self.store = store or UserStore()
        self.config_cache = config_cache or get_config_cache()
        self.resolver = resolver or GroupPermissionResolver(self.config_cache)
        self._clock = clock
        self._audit = audit
        self.rescue = AdminRescue(self.store, self.resolver, self.config_cache, clock=clock, audit=audit)

    def _today(self) -> str:
        return self._clock().date().isoformat()

    def find_user_by_identifier(self, identifier: str, auth_method: str | None = None) -> User | None:
        return self.store.find_user_by_identifier(identifier, auth_method)

    def get_user(self, user_id: str) -> User:
        user = self.store.get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    # ------------------------------------------------------------------
    # External identities
    # ------------------------------------------------------------------

    def create_or_update_external_user(self, login: ExternalLogin) -> User:
        """Persist the identity link. Never touches ``internalGroups``."""
        now = self._clock().isoformat()
        users = self.store.load()
        user = None
        for candidate in users.values():
            ident = candidate.identity(login.auth_method)
            if ident is not None and ident.subject == login.subject:
                user = candidate
                break
        if user is None:
            user = self.store.find_user_by_identifier(
                login.email or login.subject, login.auth_method
            )
            if user is not None:
                user = users[user.id]

        identity = ExternalIdentity(
            method=login.auth_method,
            subject=login.subject,
            provider=login.provider,
            last_provider=login.provider,
            extra=dict(login.extra),
        )

        if user is None:
            user = User(
                id=f"user_{uuid.uuid4().hex}",
                username=login.username or login.email or login.subject,
                email=login.email,
                name=login.name,
                internal_groups=[],
                auth_methods=[login.auth_method],
                identities=[identity],
                active=True,
                last_active_date=self._today(),
                created_at=now,
                updated_at=now,
            )
            logger.info("Created %s user %s (%s)", login.auth_method, user.id, user.username)
        else:
            user.identities = [i for i in user.identities if i.method != login.auth_method]
            user.identities.append(identity)
            if login.auth_method not in user.auth_methods:
                user.auth_methods.append(login.auth_method)
            user.name = login.name or user.name
            user.email = login.email or user.email
            user.last_active_date = self._today()
            user.updated_at = now

        users[user.id] = user
        self.store.save(users)
        return user

    def validate_and_persist_external_user(
        self, login: ExternalLogin, platform: Mapping[str, Any] | None = None
    ) -> AuthenticatedUser:
        """Gate, persist and enrich an external login.

        Raises AccountDisabled for deactivated users and SelfSignupDisallowed
        for unknown users when the provider does not allow self-signup.
        """
        platform = platform if platform is not None else self.config_cache.get_platform()
        method = login.auth_method
        config = provider_config(platform, method, login.provider)

        existing = self.store.find_user_by_identifier(login.subject, method)
        if existing is None and login.email:
            existing = self.store.find_user_by_identifier(login.email, method)

        if existing is not None and not existing.active:
            logger.warning("Login refused for disabled user %s", existing.id)
            raise AccountDisabled(existing.id)

        if existing is None:
            allow = config.get("allowSelfSignup")
            if allow is None:
                allow = method in ("ntlm", "proxy")
            if not allow:
                logger.info("Self-signup refused for %s via %s", login.subject, login.provider)
                raise SelfSignupDisallowed(login.subject)

        user = self.create_or_update_external_user(login)

        mapped = self.resolver.map_external_groups(login.groups)
        automatic = automatic_groups(platform, config)
        groups = merge_user_groups(merge_user_groups(mapped, automatic), user.internal_groups)

        session = AuthenticatedUser(
            id=user.id,
            name=user.name,
            email=user.email,
            username=user.username,
            groups=groups,
            provider=login.provider,
            auth_method=method,
            external_groups=list(login.groups),
            internal_groups=list(user.internal_groups),
            persisted=True,
            active=user.active,
            extra=dict(login.extra),
        )
        self.rescue.ensure_first_user_is_admin(session, method)
        return session

    def session_from_claims(self, claims: Mapping[str, Any]) -> AuthenticatedUser | None:
        """Rebuild a session principal from verified JWT claims.

        The persisted record wins over the token: deleted or disabled users get
        None, and groups are recomputed from the current ``internalGroups``
        plus the automatic and mapped external groups, so a demotion applies
        to sessions issued before it.
        """
        user = self.store.get(claims.get("sub") or "")
        if user is None or not user.active:
            return None

        method = claims.get("authMode") or ""
        provider = claims.get("provider") or method
        platform = self.config_cache.get_platform()
        if method == "local":
            automatic = automatic_groups(platform, platform.get("localAuth"))
            mapped: list[str] = []
        else:
            automatic = automatic_groups(platform, provider_config(platform, method, provider))
            mapped = self.resolver.map_external_groups(claims.get("externalGroups"))

        return AuthenticatedUser(
            id=user.id,
            name=user.name,
            email=user.email,
            username=user.username,
            groups=merge_user_groups(merge_user_groups(mapped, automatic), user.internal_groups),
            provider=provider,
            auth_method=method,
            external_groups=list(claims.get("externalGroups") or []),
            internal_groups=list(user.internal_groups),
            persisted=True,
            active=True,
        )

    # ------------------------------------------------------------------
    # Local accounts
    # ------------------------------------------------------------------

    def create_local_user(
        self,
        username: str,
        password: str,
        *,
        email: str | None = None,
        name: str | None = None,
        internal_groups: Iterable[str] | None = None,
        created_by: str = "system",
    ) -> User:
        if self.store.find_user_by_identifier(username) is not None:
            raise ValueError(f"User '{username}' already exists")
        now = self._clock().isoformat()
        user_id = f"user_{uuid.uuid4().hex}"
        hashed = bcrypt.hashpw(
            _password_material(user_id, password), bcrypt.gensalt(rounds=LOCAL_BCRYPT_ROUNDS)
        )
        user = User(
            id=user_id,
            username=username,
            email=email,
            name=name or username,
            internal_groups=list(internal_groups or []),
            auth_methods=["local"],
            password_hash=hashed.decode("utf-8"),
            created_at=now,
            updated_at=now,
        )
        self.store.put(user)
        logger.info("Created local user %s (%s)", user.id, username)
        if self._audit is not None:
            self._audit.record("user_created", f"user:{user.id}", actor=created_by)
        return user

    def authenticate_local(self, username: str, password: str) -> AuthenticatedUser:
        user = self.store.find_user_by_identifier(username, "local")
        if user is None or "local" not in user.auth_methods or not user.password_hash:
            raise InvalidCredentials()
        try:
            valid = bcrypt.checkpw(
                _password_material(user.id, password), user.password_hash.encode("utf-8")
            )
        except ValueError:
            valid = False
        if not valid:
            logger.info("Failed local login for %s", username)
            raise InvalidCredentials()
        if not user.active:
            raise AccountDisabled(user.id)

        platform = self.config_cache.get_platform()
        automatic = automatic_groups(platform, platform.get("localAuth"))
        self.update_user_activity(user.id)

        session = AuthenticatedUser(
            id=user.id,
            name=user.name,
            email=user.email,
            username=user.username,
            groups=merge_user_groups(automatic, user.internal_groups),
            provider="local",
            auth_method="local",
            internal_groups=list(user.internal_groups),
            persisted=True,
            active=True,
        )
        self.rescue.ensure_first_user_is_admin(session, "local")
        return session

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def update_user_activity(self, user_id: str) -> bool:
        """Bump ``lastActiveDate``; at most one write per user per day."""
        users = self.store.load()
        user = users.get(user_id)
        if user is None:
            return False
        today = self._today()
        if user.last_active_date == today:
            return False
        user.last_active_date = today
        self.store.save(users)
        return True

    def set_internal_groups(
        self, user_id: str, groups: Iterable[str], updated_by: str = "system"
    ) -> User:
        users = self.store.load()
        user = users.get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        groups = list(dict.fromkeys(groups))
        if not self.resolver.has_admin_access(groups) and self.rescue.is_last_admin(user_id):
            raise LastAdminError(user_id)
        user.internal_groups = groups
        user.updated_at = self._clock().isoformat()
        self.store.save(users)
        if self._audit is not None:
            self._audit.record(
                "user_groups_changed",
                f"user:{user_id}",
                actor=updated_by,
                severity=AuditSeverity.WARNING,
                groups=groups,
            )
        return user

    def set_active(self, user_id: str, active: bool, updated_by: str = "system") -> User:
        users = self.store.load()
        user = users.get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        if not active and self.rescue.is_last_admin(user_id):
            raise LastAdminError(user_id)
        user.active = active
        user.updated_at = self._clock().isoformat()
        self.store.save(users)
        logger.info("User %s %s by %s", user_id, "enabled" if active else "disabled", updated_by)
        if self._audit is not None:
            self._audit.record(
                "user_enabled" if active else "user_disabled", f"user:{user_id}", actor=updated_by
            )
        return user

    def delete_user(self, user_id: str, deleted_by: str = "system") -> None:
        if self.store.get(user_id) is None:
            raise UserNotFound(user_id)
        if self.rescue.is_last_admin(user_id):
            raise LastAdminError(user_id)
        self.store.delete(user_id)
        logger.info("Deleted user %s", user_id)
        if self._audit is not None:
            self._audit.record(
                "user_deleted", f"user:{user_id}", actor=deleted_by, severity=AuditSeverity.WARNING
            )


# Singleton
_manager: UserManager | None = None


def get_user_manager() -> UserManager:
    global _manager
    if _manager is None:
        from accessgate.security.audit import get_audit_logger

        _manager = UserManager(audit=get_audit_logger())
    return _manager


def reset_user_manager() -> None:
    global _manager
    _manager = None

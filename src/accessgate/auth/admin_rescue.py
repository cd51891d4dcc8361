"""
Admin rescue: keep at least one administrator reachable.
Created: 2026-10-07

When no persisted user holds an admin group (fresh install, or every admin
was removed), the next user to log in through a method that persists users
is promoted. Directory-backed methods (LDAP, NTLM) are skipped because
their admins are expected to come from group mappings.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from accessgate.auth.groups import GroupPermissionResolver
from accessgate.config import ConfigCache
from accessgate.security.audit import AuditLogger, AuditSeverity
from accessgate.storage import Clock, utcnow

if TYPE_CHECKING:
    from accessgate.auth.users import AuthenticatedUser, User, UserStore

logger = logging.getLogger(__name__)

PREFERRED_ADMIN_GROUPS = ("admins", "admin")
SKIPPED_AUTH_MODES = frozenset({"anonymous", "ldap", "ntlm"})


class AdminRescue:
    def __init__(
        self,
        store: UserStore,
        resolver: GroupPermissionResolver,
        config_cache: ConfigCache,
        *,
        clock: Clock = utcnow,
        audit: AuditLogger | None = None,
    ):
        self.store = store
        self.resolver = resolver
        self.config_cache = config_cache
        self._clock = clock
        self._audit = audit

    def _is_admin(self, user: User) -> bool:
        return user.active and self.resolver.has_admin_access(user.internal_groups)

    def _directory_grants_admin(self, platform: Mapping[str, Any]) -> bool:
        mapped_admin = any(
            group.permissions.admin_access and group.mappings
            for group in self.resolver.groups().values()
        )

        ldap = platform.get("ldapAuth") or {}
        providers = ldap.get("providers") or []
        if ldap.get("enabled") and providers:
            for provider in providers:
                if self.resolver.has_admin_access(provider.get("defaultGroups")):
                    return True
            if mapped_admin:
                return True

        ntlm = platform.get("ntlmAuth") or {}
        if ntlm.get("enabled"):
            if self.resolver.has_admin_access(ntlm.get("defaultGroups")):
                return True
            if mapped_admin:
                return True
        return False

    def has_any_admin(self) -> bool:
        if any(self._is_admin(user) for user in self.store.all()):
            return True
        return self._directory_grants_admin(self.config_cache.get_platform())

    def admin_group_for_promotion(self) -> str | None:
        admin_groups = self.resolver.admin_group_ids()
        for preferred in PREFERRED_ADMIN_GROUPS:
            if preferred in admin_groups:
                return preferred
        return admin_groups[0] if admin_groups else None

    def assign_admin_group(self, user_id: str) -> bool:
        """Append an admin group to the user's internal groups and persist."""
        users = self.store.load()
        user = users.get(user_id)
        if user is None:
            logger.warning("Cannot promote unknown user %s", user_id)
            return False
        if self.resolver.has_admin_access(user.internal_groups):
            return False
        group_id = self.admin_group_for_promotion()
        if group_id is None:
            logger.error("No group with adminAccess is configured; cannot promote %s", user_id)
            return False

        user.internal_groups.append(group_id)
        user.updated_at = self._clock().isoformat()
        self.store.save(users)
        logger.warning("Promoted %s to admin group '%s' (no administrator existed)", user_id, group_id)
        if self._audit is not None:
            self._audit.record(
                "admin_rescue",
                f"user:{user_id}",
                severity=AuditSeverity.WARNING,
                group=group_id,
            )
        return True

    def ensure_first_user_is_admin(self, user: AuthenticatedUser | None, auth_mode: str) -> bool:
        """Promote *user* if nobody can administer the platform.

        On promotion the admin group is also added to the session's groups.
        """
        if user is None or user.is_anonymous:
            return False
        if auth_mode in SKIPPED_AUTH_MODES:
            return False
        if self.has_any_admin():
            return False
        if not self.assign_admin_group(user.id):
            return False

        group_id = self.admin_group_for_promotion()
        if group_id and group_id not in user.groups:
            user.groups.append(group_id)
        if group_id and group_id not in user.internal_groups:
            user.internal_groups.append(group_id)
        return True

    def is_last_admin(self, user_id: str) -> bool:
        admins = [user.id for user in self.store.all() if self._is_admin(user)]
        return len(admins) == 1 and admins[0] == user_id

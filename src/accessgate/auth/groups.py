# Group permission resolution.
# Created: 2026-10-04
#
# Groups form a directed graph through `inherits`. Resolution flattens it
# so every group carries the union of its ancestors' permissions plus its
# own. Inheritance is additive: a child can grant more, never less. A `*`
# in any contributing set absorbs every other member of that set.

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from accessgate.config import ConfigCache
from accessgate.errors import ConfigurationCycle, UnknownParentGroup

logger = logging.getLogger(__name__)

WILDCARD = "*"
RESOURCE_TYPES = ("apps", "prompts", "models", "workflows")
ANONYMOUS_GROUP = "anonymous"
DEFAULT_AUTHENTICATED_GROUP = "authenticated"


def _union_into(target: set[str], values: Iterable[str]) -> None:
    if WILDCARD in target:
        return
    values = set(values)
    if WILDCARD in values:
        target.clear()
        target.add(WILDCARD)
    else:
        target.update(values)


@dataclass
class Permissions:
    apps: set[str] = field(default_factory=set)
    prompts: set[str] = field(default_factory=set)
    models: set[str] = field(default_factory=set)
    workflows: set[str] = field(default_factory=set)
    admin_access: bool = False

    @classmethod
    def from_config(cls, data: Mapping[str, Any] | None) -> Permissions:
        data = data or {}
        perms = cls(admin_access=bool(data.get("adminAccess", False)))
        for resource in RESOURCE_TYPES:
            values = data.get(resource) or []
            if isinstance(values, str):
                values = [values]
            _union_into(getattr(perms, resource), values)
        return perms

    def merge(self, other: Permissions) -> None:
        for resource in RESOURCE_TYPES:
            _union_into(getattr(self, resource), getattr(other, resource))
        self.admin_access = self.admin_access or other.admin_access

    def allows(self, resource_type: str, resource_id: str) -> bool:
        allowed = getattr(self, resource_type, None)
        if allowed is None:
            return False
        return WILDCARD in allowed or resource_id in allowed

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {r: sorted(getattr(self, r)) for r in RESOURCE_TYPES}
        out["adminAccess"] = self.admin_access
        return out


@dataclass
class Group:
    id: str
    name: str = ""
    description: str = ""
    inherits: list[str] = field(default_factory=list)
    mappings: list[str] = field(default_factory=list)
    permissions: Permissions = field(default_factory=Permissions)

    @classmethod
    def from_config(cls, group_id: str, data: Mapping[str, Any]) -> Group:
        return cls(
            id=data.get("id") or group_id,
            name=data.get("name") or group_id,
            description=data.get("description", ""),
            inherits=list(data.get("inherits") or []),
            mappings=list(data.get("mappings") or []),
            permissions=Permissions.from_config(data.get("permissions")),
        )


def resolve_inheritance(groups: Mapping[str, Group | Mapping[str, Any]]) -> dict[str, Group]:
    """Flatten the inheritance graph.

    Walks each group depth-first with an explicit stack. ``resolving`` holds
    the groups on the current path; meeting one of them again is a back-edge
    and raises ConfigurationCycle. ``visited`` holds fully resolved groups.
    Unknown parents raise UnknownParentGroup.
    """
    nodes: dict[str, Group] = {
        gid: g if isinstance(g, Group) else Group.from_config(gid, g) for gid, g in groups.items()
    }
    resolved: dict[str, Group] = {}
    visited: set[str] = set()
    resolving: set[str] = set()

    for root in nodes:
        if root in visited:
            continue
        path = [root]
        resolving.add(root)
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(nodes[root].inherits))]

        while stack:
            group_id, parents = stack[-1]
            parent_id = next(parents, None)

            if parent_id is None:
                stack.pop()
                path.pop()
                resolving.discard(group_id)
                resolved[group_id] = _flatten(nodes[group_id], resolved)
                visited.add(group_id)
                continue

            if parent_id not in nodes:
                raise UnknownParentGroup(group_id, parent_id)
            if parent_id in visited:
                continue
            if parent_id in resolving:
                raise ConfigurationCycle(group_id, parent_id, path[path.index(parent_id) :])

            resolving.add(parent_id)
            path.append(parent_id)
            stack.append((parent_id, iter(nodes[parent_id].inherits)))

    return resolved


def _flatten(group: Group, resolved: Mapping[str, Group]) -> Group:
    perms = Permissions()
    for parent_id in group.inherits:
        perms.merge(resolved[parent_id].permissions)
    perms.merge(group.permissions)
    return Group(
        id=group.id,
        name=group.name,
        description=group.description,
        inherits=list(group.inherits),
        mappings=list(group.mappings),
        permissions=perms,
    )


def build_group_mapping(groups: Mapping[str, Group]) -> dict[str, list[str]]:
    """External group name → internal group ids (many-to-many)."""
    mapping: dict[str, list[str]] = {}
    for group in groups.values():
        for external in group.mappings:
            targets = mapping.setdefault(external, [])
            if group.id not in targets:
                targets.append(group.id)
    return mapping


def map_external_groups(
    external_groups: Iterable[str] | None, mapping: Mapping[str, Iterable[str]]
) -> list[str]:
    """Translate IdP group names to internal ids; ``["anonymous"]`` if none map."""
    internal: list[str] = []
    for external in external_groups or []:
        targets = mapping.get(external)
        if not targets:
            logger.info("No internal group mapped for external group '%s'", external)
            continue
        for group_id in targets:
            if group_id not in internal:
                internal.append(group_id)
    return internal or [ANONYMOUS_GROUP]


def get_permissions_for_user(
    user_groups: Iterable[str] | None, resolved: Mapping[str, Group]
) -> Permissions:
    """Union the resolved permissions of every group the user belongs to."""
    perms = Permissions()
    for group_id in user_groups if user_groups is not None else [ANONYMOUS_GROUP]:
        group = resolved.get(group_id)
        if group is None:
            continue
        perms.merge(group.permissions)
    return perms


def can_access(permissions: Permissions, resource_type: str, resource_id: str) -> bool:
    return permissions.allows(resource_type, resource_id)


def filter_resources(resources: Iterable[Mapping[str, Any]], allowed: set[str]) -> list:
    """Keep resources whose id (or modelId / name) is allowed."""
    resources = list(resources)
    if WILDCARD in allowed:
        return resources
    return [
        r for r in resources if (r.get("id") or r.get("modelId") or r.get("name")) in allowed
    ]


def automatic_groups(
    platform: Mapping[str, Any], provider_config: Mapping[str, Any] | None = None
) -> list[str]:
    """Groups every logged-in user receives: "authenticated" + provider defaults."""
    groups = [platform.get("authenticatedGroup") or DEFAULT_AUTHENTICATED_GROUP]
    for group_id in (provider_config or {}).get("defaultGroups") or []:
        if group_id not in groups:
            groups.append(group_id)
    return groups


class GroupPermissionResolver:
    """Resolved view of ``groups.json``, rebuilt when the config cache changes."""

    def __init__(self, config_cache: ConfigCache):
        self.config_cache = config_cache
        self._resolved: dict[str, Group] | None = None
        self._mapping: dict[str, list[str]] = {}
        self._version = -1

    def groups(self) -> dict[str, Group]:
        if self._resolved is None or self._version != self.config_cache.version:
            raw = self.config_cache.get_groups_config().get("groups", {})
            resolved = resolve_inheritance(raw)
            self._resolved = resolved
            self._mapping = build_group_mapping(resolved)
            self._version = self.config_cache.version
            logger.debug("Resolved %d groups", len(resolved))
        return self._resolved

    def validate(self) -> None:
        """Resolve eagerly so configuration errors surface at load time."""
        self._resolved = None
        self.groups()

    def get(self, group_id: str) -> Group | None:
        return self.groups().get(group_id)

    def map_external_groups(self, external_groups: Iterable[str] | None) -> list[str]:
        self.groups()
        return map_external_groups(external_groups, self._mapping)

    def get_permissions_for_user(self, user_groups: Iterable[str] | None) -> Permissions:
        return get_permissions_for_user(user_groups, self.groups())

    def is_admin_group(self, group_id: str) -> bool:
        group = self.groups().get(group_id)
        return group is not None and group.permissions.admin_access

    def has_admin_access(self, user_groups: Iterable[str] | None) -> bool:
        return any(self.is_admin_group(g) for g in user_groups or [])

    def admin_group_ids(self) -> list[str]:
        return [gid for gid, g in self.groups().items() if g.permissions.admin_access]

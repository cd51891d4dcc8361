# Tests for group inheritance, external group mapping and permission resolution.
# Created: 2026-10-10

import logging

import pytest

from accessgate.auth.groups import (
    GroupPermissionResolver,
    Permissions,
    automatic_groups,
    can_access,
    filter_resources,
    get_permissions_for_user,
    map_external_groups,
    resolve_inheritance,
)
from accessgate.errors import ConfigurationCycle, ConfigurationError, UnknownParentGroup


@pytest.fixture
def resolved(groups_config):
    return resolve_inheritance(groups_config["groups"])


# ===================== Inheritance =====================


class TestResolveInheritance:
    def test_child_gets_union_of_ancestors(self, resolved):
        users = resolved["users"].permissions
        assert users.apps == {"chat", "summarize"}
        assert users.models == {"gpt-small", "gpt-large"}
        assert users.prompts == {"weekly-report"}
        assert users.admin_access is False

    def test_wildcard_absorbs_inherited_ids(self, resolved):
        admins = resolved["admins"].permissions
        assert admins.apps == {"*"}
        assert admins.models == {"*"}
        assert admins.admin_access is True

    def test_admin_access_is_inherited(self):
        groups = {
            "root": {"permissions": {"adminAccess": True}},
            "child": {"inherits": ["root"], "permissions": {"apps": ["x"]}},
        }
        assert resolve_inheritance(groups)["child"].permissions.admin_access is True

    def test_diamond_is_not_a_cycle(self):
        groups = {
            "d": {"inherits": ["b", "c"]},
            "b": {"inherits": ["a"], "permissions": {"apps": ["b-app"]}},
            "c": {"inherits": ["a"], "permissions": {"apps": ["c-app"]}},
            "a": {"permissions": {"apps": ["a-app"]}},
        }
        resolved = resolve_inheritance(groups)
        assert resolved["d"].permissions.apps == {"a-app", "b-app", "c-app"}

    def test_two_group_cycle_raises(self):
        groups = {"a": {"inherits": ["b"]}, "b": {"inherits": ["a"]}}
        with pytest.raises(ConfigurationCycle, match="a -> b -> a"):
            resolve_inheritance(groups)

    def test_self_inheritance_raises(self):
        with pytest.raises(ConfigurationCycle, match="a -> a"):
            resolve_inheritance({"a": {"inherits": ["a"]}})

    def test_cycle_is_a_configuration_error(self):
        groups = {"x": {"inherits": ["y"]}, "y": {"inherits": ["z"]}, "z": {"inherits": ["x"]}}
        with pytest.raises(ConfigurationError):
            resolve_inheritance(groups)

    def test_unknown_parent_raises(self):
        with pytest.raises(UnknownParentGroup, match="ghost"):
            resolve_inheritance({"a": {"inherits": ["ghost"]}})

    def test_single_string_permission_is_accepted(self):
        resolved = resolve_inheritance({"a": {"permissions": {"apps": "chat"}}})
        assert resolved["a"].permissions.apps == {"chat"}


# ===================== External group mapping =====================


class TestMapExternalGroups:
    def test_maps_known_groups_in_order(self, resolver):
        assert resolver.map_external_groups(["Staff", "IT-Admins", "Nope"]) == ["users", "admins"]

    def test_unmapped_falls_back_to_anonymous(self, resolver):
        assert resolver.map_external_groups(["Nope"]) == ["anonymous"]
        assert resolver.map_external_groups([]) == ["anonymous"]
        assert resolver.map_external_groups(None) == ["anonymous"]

    def test_unmapped_group_is_logged_at_info(self, resolver, caplog):
        with caplog.at_level(logging.INFO, logger="accessgate.auth.groups"):
            resolver.map_external_groups(["Staff", "Contractors"])
        assert [r.levelno for r in caplog.records if "Contractors" in r.getMessage()] == [
            logging.INFO
        ]

    def test_one_external_group_maps_to_many(self):
        mapping = {"Staff": ["users", "reporters"]}
        assert map_external_groups(["Staff"], mapping) == ["users", "reporters"]


# ===================== Effective permissions =====================


class TestPermissionsForUser:
    def test_union_over_groups(self, resolved):
        perms = get_permissions_for_user(["anonymous", "users"], resolved)
        assert perms.apps == {"chat", "summarize"}

    def test_unknown_groups_are_skipped(self, resolved):
        perms = get_permissions_for_user(["users", "does-not-exist"], resolved)
        assert perms.prompts == {"weekly-report"}

    def test_none_means_anonymous(self, resolved):
        perms = get_permissions_for_user(None, resolved)
        assert perms.apps == {"chat"}
        assert perms.prompts == set()

    def test_can_access_honours_wildcard(self, resolved):
        admin = get_permissions_for_user(["admins"], resolved)
        user = get_permissions_for_user(["users"], resolved)
        assert can_access(admin, "workflows", "anything")
        assert can_access(user, "apps", "chat")
        assert not can_access(user, "apps", "admin-console")
        assert not can_access(user, "unknown-type", "chat")

    def test_to_dict_is_sorted(self, resolved):
        data = get_permissions_for_user(["users"], resolved).to_dict()
        assert data["apps"] == ["chat", "summarize"]
        assert data["adminAccess"] is False

    def test_merge_keeps_wildcard(self):
        perms = Permissions(apps={"*"})
        perms.merge(Permissions(apps={"chat"}))
        assert perms.apps == {"*"}


class TestFilterResources:
    def test_filters_by_id_or_model_id(self):
        resources = [{"id": "chat"}, {"modelId": "gpt-large"}, {"id": "secret"}]
        assert filter_resources(resources, {"chat", "gpt-large"}) == resources[:2]

    def test_wildcard_keeps_everything(self):
        resources = [{"id": "a"}, {"id": "b"}]
        assert filter_resources(resources, {"*"}) == resources


def test_automatic_groups_include_provider_defaults():
    platform = {"authenticatedGroup": "members"}
    assert automatic_groups(platform, {"defaultGroups": ["users", "members"]}) == [
        "members",
        "users",
    ]
    assert automatic_groups({}) == ["authenticated"]


# ===================== Resolver =====================


class TestGroupPermissionResolver:
    def test_rebuilds_after_config_change(self, config_cache, groups_config):
        resolver = GroupPermissionResolver(config_cache)
        assert resolver.is_admin_group("admins")

        groups_config["groups"]["admins"]["permissions"]["adminAccess"] = False
        config_cache.set("groups", groups_config)

        assert not resolver.is_admin_group("admins")

    def test_validate_surfaces_cycles(self, config_cache):
        config_cache.set("groups", {"groups": {"a": {"inherits": ["a"]}}})
        with pytest.raises(ConfigurationCycle):
            GroupPermissionResolver(config_cache).validate()

    def test_admin_helpers(self, resolver):
        assert resolver.has_admin_access(["users", "admins"])
        assert not resolver.has_admin_access(["users"])
        assert not resolver.has_admin_access(None)
        assert resolver.admin_group_ids() == ["admins"]

# Tests for user persistence, external login reconciliation and local accounts.
# Created: 2026-10-10

import pytest

from accessgate.auth.tokens import TokenService
from accessgate.auth.users import ExternalLogin, User, merge_user_groups
from accessgate.errors import (
    AccountDisabled,
    InvalidCredentials,
    LastAdminError,
    SelfSignupDisallowed,
    UserNotFound,
)

CORP_PLATFORM = {
    "oidcAuth": {
        "providers": [
            {"name": "corp", "allowSelfSignup": True, "defaultGroups": ["users"]},
            {"name": "partner", "allowSelfSignup": False},
        ]
    }
}


@pytest.fixture
def admin(user_store):
    user = User(id="user_admin", username="root", internal_groups=["admins"], auth_methods=["local"])
    user_store.put(user)
    return user


@pytest.fixture
def corp(config_cache):
    config_cache.set("platform", CORP_PLATFORM)


def corp_login(**overrides):
    data = {
        "subject": "sub-1",
        "provider": "corp",
        "name": "Ann",
        "email": "ann@example.com",
        "groups": ["Staff", "Unknown"],
    }
    data.update(overrides)
    return ExternalLogin(**data)


def test_merge_user_groups_keeps_order_and_drops_duplicates():
    assert merge_user_groups(["a", "b"], ["b", "c"]) == ["a", "b", "c"]
    assert merge_user_groups(None, ["x"]) == ["x"]


def test_provider_determines_auth_method():
    assert ExternalLogin(subject="s", provider="corp").auth_method == "oidc"
    assert ExternalLogin(subject="s", provider="proxy").auth_method == "proxy"
    assert ExternalLogin(subject="s", provider="ntlm").auth_method == "ntlm"


# ===================== External logins =====================


@pytest.mark.usefixtures("admin", "corp")
class TestExternalLogin:
    def test_new_user_is_created_with_mapped_groups(self, manager, user_store):
        session = manager.validate_and_persist_external_user(corp_login())

        assert session.auth_method == "oidc"
        assert session.groups == ["users", "authenticated"]
        assert session.external_groups == ["Staff", "Unknown"]
        assert session.persisted

        stored = user_store.get(session.id)
        assert stored.internal_groups == []
        assert stored.identity("oidc").subject == "sub-1"
        assert "groups" not in user_store.backend.load()[session.id]

    def test_internal_groups_survive_relogin(self, manager, user_store):
        first = manager.validate_and_persist_external_user(corp_login())
        manager.set_internal_groups(first.id, ["reporters"])

        again = manager.validate_and_persist_external_user(corp_login(groups=[]))

        assert again.id == first.id
        assert again.groups == ["anonymous", "authenticated", "users", "reporters"]
        assert user_store.get(first.id).internal_groups == ["reporters"]

    def test_profile_is_refreshed(self, manager, user_store):
        first = manager.validate_and_persist_external_user(corp_login())
        manager.validate_and_persist_external_user(corp_login(name="Ann B."))
        assert user_store.get(first.id).name == "Ann B."

    def test_disabled_user_is_refused(self, manager):
        session = manager.validate_and_persist_external_user(corp_login())
        manager.set_active(session.id, False)

        with pytest.raises(AccountDisabled):
            manager.validate_and_persist_external_user(corp_login())

    def test_self_signup_disallowed(self, manager, user_store):
        with pytest.raises(SelfSignupDisallowed):
            manager.validate_and_persist_external_user(corp_login(provider="partner"))
        assert len(user_store.all()) == 1

    def test_unconfigured_oidc_provider_disallows_signup(self, manager):
        with pytest.raises(SelfSignupDisallowed):
            manager.validate_and_persist_external_user(corp_login(provider="unknown-idp"))

    def test_proxy_allows_signup_by_default(self, manager):
        session = manager.validate_and_persist_external_user(
            ExternalLogin(subject="bob", provider="proxy")
        )
        assert session.auth_method == "proxy"
        assert session.groups == ["anonymous", "authenticated"]

    def test_oidc_email_never_attaches_to_local_account(self, manager, user_store, admin):
        admin.email = "root@corp.example"
        user_store.put(admin)

        session = manager.validate_and_persist_external_user(
            corp_login(subject="other-sub", email="root@corp.example", groups=[])
        )

        assert session.id != admin.id
        assert "admins" not in session.groups
        assert user_store.get(admin.id).auth_methods == ["local"]
        assert user_store.get(admin.id).identities == []

    def test_proxy_subject_never_attaches_to_local_account(self, manager, user_store, admin):
        session = manager.validate_and_persist_external_user(
            ExternalLogin(subject="root", provider="proxy")
        )

        assert session.id != admin.id
        assert "admins" not in session.groups
        assert user_store.get(session.id).internal_groups == []

    def test_unknown_email_does_not_bypass_self_signup(self, manager):
        manager.create_local_user("carol", "pw-123", email="carol@example.com")

        with pytest.raises(SelfSignupDisallowed):
            manager.validate_and_persist_external_user(
                corp_login(subject="sub-c", provider="partner", email="carol@example.com")
            )

    def test_same_method_email_relinks_existing_user(self, manager, user_store):
        first = manager.validate_and_persist_external_user(corp_login())
        again = manager.validate_and_persist_external_user(
            corp_login(subject="rotated-sub", provider="partner")
        )

        assert again.id == first.id
        assert user_store.get(first.id).identity("oidc").subject == "rotated-sub"


# ===================== Sessions rebuilt from tokens =====================


@pytest.mark.usefixtures("admin", "corp")
class TestSessionFromClaims:
    def test_unknown_user_has_no_session(self, manager):
        assert manager.session_from_claims({"sub": "ghost", "authMode": "local"}) is None

    def test_disabled_user_has_no_session(self, manager, admin):
        other = manager.create_local_user("bob", "pw-123")
        manager.set_active(other.id, False)
        assert manager.session_from_claims({"sub": other.id, "authMode": "local"}) is None

    def test_groups_come_from_current_record(self, manager, settings, config_cache):
        session = manager.validate_and_persist_external_user(corp_login(groups=["Staff"]))
        token, _ = TokenService(settings, config_cache).generate_jwt(session, auth_mode="oidc")
        claims = TokenService(settings, config_cache).verify_jwt(token)
        assert claims["externalGroups"] == ["Staff"]

        claims["groups"] = ["admins"]
        rebuilt = manager.session_from_claims(claims)

        assert set(rebuilt.groups) == {"users", "authenticated"}
        assert rebuilt.external_groups == ["Staff"]

    def test_local_session_picks_up_new_internal_groups(self, manager, admin):
        bob = manager.create_local_user("bob", "pw-123")
        manager.set_internal_groups(bob.id, ["admins"])

        rebuilt = manager.session_from_claims({"sub": bob.id, "authMode": "local", "groups": []})
        assert rebuilt.groups == ["authenticated", "admins"]


# ===================== Admin rescue through login =====================


class TestFirstLoginPromotion:
    def test_first_user_becomes_admin(self, manager, user_store):
        session = manager.validate_and_persist_external_user(
            ExternalLogin(subject="bob", provider="proxy")
        )
        assert "admins" in session.groups
        assert user_store.get(session.id).internal_groups == ["admins"]

        second = manager.validate_and_persist_external_user(
            ExternalLogin(subject="eve", provider="proxy")
        )
        assert "admins" not in second.groups

    def test_ldap_login_is_not_promoted(self, manager, config_cache):
        config_cache.set("platform", {"ldapAuth": {"allowSelfSignup": True}})
        session = manager.validate_and_persist_external_user(
            ExternalLogin(subject="cn=bob", provider="ldap")
        )
        assert "admins" not in session.groups


# ===================== Legacy records =====================


class TestLegacyMigration:
    def test_identity_blocks_become_identities(self):
        user = User.model_validate(
            {
                "id": "user_1",
                "username": "ann",
                "oidcData": {"subject": "s1", "provider": "corp", "tenant": "t"},
                "proxyData": {"subject": "ann"},
            }
        )
        assert user.identity("oidc").subject == "s1"
        assert user.identity("oidc").extra == {"tenant": "t"}
        assert user.identity("proxy").subject == "ann"
        assert "oidcData" not in user.to_record()

    def test_additional_groups_fold_into_internal(self):
        user = User.model_validate(
            {
                "id": "user_1",
                "username": "ann",
                "internalGroups": ["g0"],
                "additionalGroups": ["g1", "g0"],
                "groups": ["stale"],
            }
        )
        assert user.internal_groups == ["g0", "g1"]
        assert "groups" not in user.to_record()

    def test_to_public_hides_password_hash(self):
        user = User(id="u", username="ann", password_hash="$2b$hash")
        assert "passwordHash" not in user.to_public()


# ===================== Local accounts =====================


@pytest.mark.usefixtures("admin")
class TestLocalAccounts:
    def test_authenticate(self, manager, user_store):
        created = manager.create_local_user(
            "alice", "pw-123", email="alice@example.com", internal_groups=["users"]
        )
        assert user_store.get(created.id).password_hash != "pw-123"

        session = manager.authenticate_local("alice", "pw-123")
        assert session.id == created.id
        assert session.groups == ["authenticated", "users"]
        assert session.provider == "local"

        assert manager.authenticate_local("alice@example.com", "pw-123").id == created.id

    def test_bad_credentials(self, manager):
        manager.create_local_user("alice", "pw-123")
        with pytest.raises(InvalidCredentials):
            manager.authenticate_local("alice", "wrong")
        with pytest.raises(InvalidCredentials):
            manager.authenticate_local("nobody", "pw-123")

    def test_external_only_user_has_no_password(self, manager, config_cache):
        config_cache.set("platform", CORP_PLATFORM)
        manager.validate_and_persist_external_user(corp_login())
        with pytest.raises(InvalidCredentials):
            manager.authenticate_local("ann@example.com", "")

    def test_disabled_account(self, manager):
        user = manager.create_local_user("alice", "pw-123")
        manager.set_active(user.id, False)
        with pytest.raises(AccountDisabled):
            manager.authenticate_local("alice", "pw-123")

    def test_duplicate_username(self, manager):
        manager.create_local_user("alice", "pw-123")
        with pytest.raises(ValueError, match="already exists"):
            manager.create_local_user("alice", "other")

    def test_local_default_groups(self, manager, config_cache):
        config_cache.set("platform", {"localAuth": {"defaultGroups": ["reporters"]}})
        manager.create_local_user("alice", "pw-123")
        assert manager.authenticate_local("alice", "pw-123").groups == [
            "authenticated",
            "reporters",
        ]

    def test_activity_written_once_per_day(self, manager, clock):
        user = manager.create_local_user("alice", "pw-123")
        assert manager.update_user_activity(user.id) is True
        assert manager.update_user_activity(user.id) is False
        clock.advance(days=1)
        assert manager.update_user_activity(user.id) is True
        assert manager.update_user_activity("user_missing") is False


def test_first_local_login_is_promoted(manager):
    manager.create_local_user("first", "pw-123")
    assert "admins" in manager.authenticate_local("first", "pw-123").groups


# ===================== Administration guards =====================


@pytest.mark.usefixtures("admin")
class TestLastAdminGuards:
    def test_cannot_delete_last_admin(self, manager):
        with pytest.raises(LastAdminError):
            manager.delete_user("user_admin")

    def test_cannot_disable_last_admin(self, manager):
        with pytest.raises(LastAdminError):
            manager.set_active("user_admin", False)

    def test_cannot_demote_last_admin(self, manager):
        with pytest.raises(LastAdminError):
            manager.set_internal_groups("user_admin", ["users"])
        manager.set_internal_groups("user_admin", ["admins", "users"])

    def test_second_admin_lifts_the_guard(self, manager):
        other = manager.create_local_user("backup", "pw-123", internal_groups=["admins"])
        manager.delete_user("user_admin")
        with pytest.raises(UserNotFound):
            manager.get_user("user_admin")
        assert manager.rescue.is_last_admin(other.id)

    def test_unknown_user(self, manager):
        with pytest.raises(UserNotFound):
            manager.delete_user("user_missing")
        with pytest.raises(UserNotFound):
            manager.set_active("user_missing", True)

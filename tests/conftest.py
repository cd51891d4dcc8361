# Shared fixtures.
# Created: 2026-10-10

import copy
from datetime import UTC, datetime, timedelta

import pytest

from accessgate import lifecycle
from accessgate.auth.groups import GroupPermissionResolver
from accessgate.auth.users import UserManager, UserStore
from accessgate.config import ConfigCache, Settings
from accessgate.storage import MemoryBackend

TEST_SECRET = "test-secret-0123456789abcdef0123456789abcdef0123456789abcdef"

GROUPS = {
    "groups": {
        "anonymous": {
            "id": "anonymous",
            "name": "Anonymous",
            "permissions": {"apps": ["chat"], "models": ["gpt-small"]},
        },
        "authenticated": {
            "id": "authenticated",
            "name": "Authenticated",
            "inherits": ["anonymous"],
            "permissions": {"apps": ["summarize"], "models": ["gpt-large"]},
        },
        "users": {
            "id": "users",
            "name": "Users",
            "inherits": ["authenticated"],
            "mappings": ["Staff"],
            "permissions": {"prompts": ["weekly-report"]},
        },
        "admins": {
            "id": "admins",
            "name": "Admins",
            "inherits": ["users"],
            "mappings": ["IT-Admins"],
            "permissions": {
                "apps": ["*"],
                "prompts": ["*"],
                "models": ["*"],
                "workflows": ["*"],
                "adminAccess": True,
            },
        },
    }
}


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _isolate(tmp_path, monkeypatch):
    """Point every default path at tmp_path and drop singletons between tests."""
    from accessgate.auth import tokens, users
    from accessgate.config import reset_config_cache, reset_settings
    from accessgate.oauth2 import clients, refresh_tokens
    from accessgate.oauth2.server import reset_oauth_server
    from accessgate.security.audit import reset_audit_logger

    monkeypatch.setenv("ACCESSGATE_CONFIG_DIR", str(tmp_path / "home"))
    for name in ("ACCESSGATE_JWT_SECRET", "ACCESSGATE_JWT_ALGORITHM", "ACCESSGATE_CONTENTS_DIR"):
        monkeypatch.delenv(name, raising=False)

    # bcrypt at production cost makes the suite crawl
    monkeypatch.setattr(users, "LOCAL_BCRYPT_ROUNDS", 4)
    monkeypatch.setattr(clients, "BCRYPT_ROUNDS", 4)
    monkeypatch.setattr(refresh_tokens, "BCRYPT_ROUNDS", 4)

    yield

    reset_settings()
    reset_config_cache()
    tokens.reset_token_service()
    users.reset_user_manager()
    reset_oauth_server()
    reset_audit_logger()
    lifecycle.reset_all()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        config_dir=tmp_path / "home",
        contents_dir=tmp_path / "contents",
        jwt_algorithm="HS256",
        jwt_secret=TEST_SECRET,
    )


@pytest.fixture
def groups_config():
    return copy.deepcopy(GROUPS)


@pytest.fixture
def config_cache(tmp_path, groups_config):
    cache = ConfigCache(contents_dir=tmp_path / "contents")
    cache.set("groups", copy.deepcopy(groups_config))
    cache.set("platform", {})
    return cache


@pytest.fixture
def resolver(config_cache):
    return GroupPermissionResolver(config_cache)


@pytest.fixture
def user_store():
    return UserStore(MemoryBackend())


@pytest.fixture
def manager(user_store, resolver, config_cache, clock):
    return UserManager(user_store, resolver, config_cache, clock=clock)

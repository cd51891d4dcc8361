# Settings and configuration cache.
# Created: 2026-10-02
#
# Settings come from ACCESSGATE_* environment variables (or a .env file).
# Deployment configuration (platform.json, groups.json, apps.json,
# models.json) lives in the contents directory and is served by ConfigCache.

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from accessgate.errors import ConfigurationError

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class Settings(BaseSettings):
    """Process-level settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESSGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    config_dir: Path = Field(default_factory=lambda: Path.home() / ".accessgate")
    contents_dir: Path | None = None

    # JWT
    jwt_algorithm: Literal["HS256", "RS256"] | None = None
    jwt_secret: str | None = None
    jwt_private_key: str | None = None
    jwt_public_key: str | None = None
    jwt_issuer: str = "accessgate"
    jwt_audience: str = "accessgate"
    jwt_expiration_minutes: int = 480
    auto_generate_keys: bool = True

    # OAuth2
    auth_code_ttl_minutes: int = 10
    code_sweep_interval_seconds: int = 300
    refresh_token_ttl_days: int = 30
    consent_ttl_days: int = 90

    # HTTP
    api_host: str = "127.0.0.1"
    api_port: int = 8890
    login_url: str = "/login"
    cookie_secure: bool = False

    log_level: str = "INFO"

    @classmethod
    def load(cls) -> Settings:
        return cls()

    def resolved_contents_dir(self) -> Path:
        return self.contents_dir if self.contents_dir is not None else self.config_dir / "config"


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings() -> None:
    """Reset singleton (for testing)."""
    global _settings
    _settings = None


def get_config_dir() -> Path:
    d = get_settings().config_dir
    d.mkdir(parents=True, exist_ok=True)
    return d


def is_placeholder(value: Any) -> bool:
    """True for unresolved ``${VAR}`` template strings."""
    return isinstance(value, str) and bool(_PLACEHOLDER_RE.search(value))


def _resolve_placeholders(value: Any) -> Any:
    if isinstance(value, str):
        return _PLACEHOLDER_RE.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, list):
        return [_resolve_placeholders(v) for v in value]
    if isinstance(value, dict):
        return {k: _resolve_placeholders(v) for k, v in value.items()}
    return value


class ConfigCache:
    """Read-through cache over the JSON files in the contents directory.

    Keys are file names without the ``.json`` suffix (``platform``,
    ``groups``, ``apps``, ``models``). ``version`` increases on every change
    so derived caches (resolved groups) know when to rebuild.
    """

    _DEFAULTS: dict[str, Any] = {
        "platform": {},
        "groups": {"groups": {}},
        "apps": [],
        "models": [],
    }

    def __init__(self, contents_dir: Path | None = None):
        self.contents_dir = contents_dir or get_settings().resolved_contents_dir()
        self._entries: dict[str, Any] = {}
        self.version = 0

    def _path(self, key: str) -> Path:
        return self.contents_dir / f"{key}.json"

    def _read(self, key: str) -> Any:
        path = self._path(key)
        if not path.exists():
            default = self._DEFAULTS.get(key, {})
            return json.loads(json.dumps(default))
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {path}: {exc}") from exc
        except OSError:
            logger.error("Could not read configuration file %s", path, exc_info=True)
            raise
        return _resolve_placeholders(data)

    def get(self, key: str) -> Any:
        if key not in self._entries:
            self._entries[key] = self._read(key)
        return self._entries[key]

    def set(self, key: str, data: Any) -> None:
        """Replace a cached entry (admin edits, tests)."""
        self._entries[key] = data
        self.version += 1

    def reload(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
        self.version += 1

    def get_platform(self) -> dict[str, Any]:
        return self.get("platform") or {}

    def get_groups_config(self) -> dict[str, Any]:
        data = self.get("groups") or {}
        data.setdefault("groups", {})
        return data

    def get_apps(self) -> list[dict[str, Any]]:
        return list(self.get("apps") or [])

    def get_models(self) -> list[dict[str, Any]]:
        return list(self.get("models") or [])


_cache: ConfigCache | None = None


def get_config_cache() -> ConfigCache:
    global _cache
    if _cache is None:
        _cache = ConfigCache()
    return _cache


def reset_config_cache() -> None:
    global _cache
    _cache = None

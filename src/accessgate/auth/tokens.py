# JWT issuance and verification.
# Created: 2026-10-06
#
# HS256 (shared secret) or RS256 (key pair). Keys are resolved once per
# service instance: environment → platform config → a generated fallback
# persisted under the config directory.

from __future__ import annotations

import hashlib
import logging
import os
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from accessgate.config import ConfigCache, Settings, get_config_cache, get_settings, is_placeholder
from accessgate.errors import MissingSigningKey
from accessgate.storage import Clock, utcnow

logger = logging.getLogger(__name__)

SECRET_FILE = "jwt-secret"
PRIVATE_KEY_FILE = Path("keys") / "jwt-private.pem"
PUBLIC_KEY_FILE = Path("keys") / "jwt-public.pem"


@dataclass
class SigningKeys:
    algorithm: str
    signing_key: Any
    verification_key: Any
    public_pem: str | None = None
    source: str = ""

    @property
    def kid(self) -> str | None:
        if self.public_pem is None:
            return None
        return hashlib.sha256(self.public_pem.encode("utf-8")).hexdigest()[:16]


def _usable(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip()) and not is_placeholder(value)


def _write_private(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)


def _public_pem_from_private(private_pem: str) -> str:
    key = serialization.load_pem_private_key(private_pem.encode("utf-8"), password=None)
    return (
        key.public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        .decode("utf-8")
    )


def _read_key_file(value: Any) -> str | None:
    if not _usable(value):
        return None
    path = Path(value).expanduser()
    if not path.is_file():
        logger.warning("Configured key file %s does not exist", path)
        return None
    return path.read_text(encoding="utf-8")


def resolve_signing_keys(
    settings: Settings, platform: Mapping[str, Any], config_dir: Path
) -> SigningKeys:
    """Find (or create) the keys for the configured algorithm."""
    jwt_config = platform.get("jwt") or {}
    auth_config = platform.get("auth") or {}
    algorithm = settings.jwt_algorithm or jwt_config.get("algorithm") or "HS256"

    if algorithm == "HS256":
        return _resolve_secret(settings, jwt_config, auth_config, config_dir)
    if algorithm == "RS256":
        return _resolve_key_pair(settings, jwt_config, config_dir)
    raise MissingSigningKey(f"Unsupported JWT algorithm: {algorithm}")


def _resolve_secret(
    settings: Settings, jwt_config: Mapping, auth_config: Mapping, config_dir: Path
) -> SigningKeys:
    candidates = [
        ("environment", settings.jwt_secret),
        ("platform.jwt.secret", jwt_config.get("secret")),
        ("platform.auth.jwtSecret", auth_config.get("jwtSecret")),
    ]
    for source, value in candidates:
        if _usable(value):
            return SigningKeys("HS256", value, value, source=source)

    path = config_dir / SECRET_FILE
    if path.is_file():
        secret = path.read_text(encoding="utf-8").strip()
        if secret:
            return SigningKeys("HS256", secret, secret, source=str(path))

    if not settings.auto_generate_keys:
        raise MissingSigningKey("No JWT secret configured and key generation is disabled")

    secret = secrets.token_hex(32)
    _write_private(path, secret)
    logger.warning("Generated a new JWT secret at %s", path)
    return SigningKeys("HS256", secret, secret, source=str(path))


def _resolve_key_pair(settings: Settings, jwt_config: Mapping, config_dir: Path) -> SigningKeys:
    private_pem: str | None = None
    public_pem: str | None = None
    source = ""

    if _usable(settings.jwt_private_key):
        private_pem, source = settings.jwt_private_key, "environment"
        public_pem = settings.jwt_public_key if _usable(settings.jwt_public_key) else None
    elif _usable(jwt_config.get("privateKey")):
        private_pem, source = jwt_config["privateKey"], "platform.jwt.privateKey"
        public_pem = jwt_config.get("publicKey") if _usable(jwt_config.get("publicKey")) else None
    else:
        private_pem = _read_key_file(jwt_config.get("privateKeyPath"))
        if private_pem is not None:
            source = "platform.jwt.privateKeyPath"
            public_pem = _read_key_file(jwt_config.get("publicKeyPath"))

    if private_pem is None:
        private_path = config_dir / PRIVATE_KEY_FILE
        public_path = config_dir / PUBLIC_KEY_FILE
        if private_path.is_file():
            private_pem, source = private_path.read_text(encoding="utf-8"), str(private_path)
            if public_path.is_file():
                public_pem = public_path.read_text(encoding="utf-8")
        elif settings.auto_generate_keys:
            private_pem, public_pem = _generate_key_pair(private_path, public_path)
            source = str(private_path)
        else:
            raise MissingSigningKey("No RS256 private key configured and key generation is disabled")

    if public_pem is None:
        public_pem = _public_pem_from_private(private_pem)
    return SigningKeys("RS256", private_pem, public_pem, public_pem=public_pem, source=source)


def _generate_key_pair(private_path: Path, public_path: Path) -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = _public_pem_from_private(private_pem)
    _write_private(private_path, private_pem)
    _write_private(public_path, public_pem)
    logger.warning("Generated a new RS256 key pair at %s", private_path.parent)
    return private_pem, public_pem


def _user_field(user: Any, name: str, default: Any = None) -> Any:
    if isinstance(user, Mapping):
        return user.get(name, default)
    return getattr(user, name, default)


class TokenService:
    """Signs and verifies platform JWTs."""

    def __init__(
        self,
        settings: Settings | None = None,
        config_cache: ConfigCache | None = None,
        *,
        clock: Clock = utcnow,
    ):
        self.settings = settings or get_settings()
        self.config_cache = config_cache or get_config_cache()
        self._clock = clock
        self._keys: SigningKeys | None = None

    @property
    def keys(self) -> SigningKeys:
        if self._keys is None:
            self._keys = resolve_signing_keys(
                self.settings, self.config_cache.get_platform(), self.settings.config_dir
            )
            logger.info("JWT signing: %s from %s", self._keys.algorithm, self._keys.source)
        return self._keys

    @property
    def algorithm(self) -> str:
        return self.keys.algorithm

    @property
    def issuer(self) -> str:
        return self.settings.jwt_issuer

    @property
    def audience(self) -> str:
        return self.settings.jwt_audience

    def now(self):
        return self._clock()

    def reload(self) -> None:
        self._keys = None

    def generate_jwt(
        self,
        user: Any,
        *,
        auth_mode: str,
        expires_in_minutes: int | None = None,
        additional_claims: Mapping[str, Any] | None = None,
    ) -> tuple[str, int]:
        """Sign a token for *user*. Returns (token, expires_in_seconds).

        An ``aud`` inside *additional_claims* replaces the configured audience.
        """
        minutes = expires_in_minutes or self.settings.jwt_expiration_minutes
        now = self._clock()
        extra = dict(additional_claims or {})
        audience = extra.pop("aud", None) or self.audience
        provider = _user_field(user, "provider") or auth_mode

        claims: dict[str, Any] = {
            "sub": _user_field(user, "id"),
            "name": _user_field(user, "name"),
            "email": _user_field(user, "email"),
            "groups": list(_user_field(user, "groups") or []),
            "provider": provider,
            "authMode": auth_mode,
            "authProvider": provider,
            **extra,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=minutes)).timestamp()),
            "iss": self.issuer,
            "aud": audience,
        }
        # Raw IdP groups, so sessions can be re-mapped against the current groups.json
        external_groups = _user_field(user, "external_groups")
        if external_groups:
            claims["externalGroups"] = list(external_groups)

        headers = {"kid": self.keys.kid} if self.keys.kid else None
        token = jwt.encode(claims, self.keys.signing_key, algorithm=self.algorithm, headers=headers)
        return token, minutes * 60

    def validate_jwt(self, token: str, audience: str | None = None) -> dict[str, Any]:
        """Verify and decode. Raises ``jwt.InvalidTokenError`` subclasses."""
        return jwt.decode(
            token,
            self.keys.verification_key,
            algorithms=[self.algorithm],
            audience=audience or self.audience,
            issuer=self.issuer,
            options={"require": ["exp", "iat", "iss", "aud"]},
        )

    def verify_jwt(self, token: str, audience: str | None = None) -> dict[str, Any] | None:
        try:
            return self.validate_jwt(token, audience=audience)
        except jwt.ExpiredSignatureError:
            logger.debug("JWT expired")
        except jwt.InvalidTokenError as exc:
            logger.debug("JWT rejected: %s", exc)
        return None

    @staticmethod
    def decode_jwt(token: str) -> dict[str, Any] | None:
        """Decode without verification (diagnostics only)."""
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None

    def jwks(self) -> dict[str, list[dict[str, Any]]]:
        keys = self.keys
        if keys.algorithm != "RS256":
            return {"keys": []}
        public_key = serialization.load_pem_public_key(keys.public_pem.encode("utf-8"))
        jwk = RSAAlgorithm.to_jwk(public_key, as_dict=True)
        jwk.update({"kid": keys.kid, "use": "sig", "alg": "RS256"})
        return {"keys": [jwk]}


# Singleton
_service: TokenService | None = None


def get_token_service() -> TokenService:
    global _service
    if _service is None:
        _service = TokenService()
    return _service


def reset_token_service() -> None:
    global _service
    _service = None

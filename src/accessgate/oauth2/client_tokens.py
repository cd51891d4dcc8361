# Machine-to-machine tokens for OAuth clients.
# Created: 2026-10-06
#
# Client-credentials access tokens and long-lived static API keys are both
# JWTs signed by the TokenService. allowedApps / allowedModels are never
# embedded; they are read from the live client record so that edits take
# effect without reissuing tokens.

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

import jwt

from accessgate.auth.tokens import TokenService, get_token_service
from accessgate.errors import InvalidScope
from accessgate.oauth2.clients import OAuthClient, OAuthClientStore

logger = logging.getLogger(__name__)

CLIENT_CREDENTIALS_MODE = "oauth_client_credentials"
STATIC_KEY_MODE = "oauth_static_api_key"
CLIENT_MODES = frozenset({CLIENT_CREDENTIALS_MODE, STATIC_KEY_MODE})
CLIENT_GROUP = "oauth_clients"


def validate_scopes(requested: Iterable[str], allowed: Iterable[str]) -> bool:
    allowed = set(allowed or [])
    if not allowed:
        return True
    return set(requested or []).issubset(allowed)


def validate_app_access(app_id: str, allowed_apps: Iterable[str] | None) -> bool:
    allowed = list(allowed_apps or [])
    return not allowed or "*" in allowed or app_id in allowed


def validate_model_access(model_id: str, allowed_models: Iterable[str] | None) -> bool:
    allowed = list(allowed_models or [])
    return not allowed or "*" in allowed or model_id in allowed


def _client_principal(client: OAuthClient) -> dict[str, Any]:
    return {
        "id": client.client_id,
        "name": client.name,
        "email": None,
        "groups": [CLIENT_GROUP],
        "provider": "oauth",
    }


class OAuthTokenService:
    def __init__(
        self,
        token_service: TokenService | None = None,
        client_store: OAuthClientStore | None = None,
    ):
        self.tokens = token_service or get_token_service()
        self.clients = client_store

    def generate_oauth_token(
        self, client: OAuthClient, requested_scope: str | None = None
    ) -> dict[str, Any]:
        """Issue a client-credentials access token.

        Raises InvalidScope when *requested_scope* asks for more than the
        client was granted.
        """
        if requested_scope:
            scopes = requested_scope.split()
            if not set(scopes).issubset(client.scopes):
                raise InvalidScope("Requested scope exceeds the client's allowed scopes")
        else:
            scopes = list(client.scopes)

        token, expires_in = self.tokens.generate_jwt(
            _client_principal(client),
            auth_mode=CLIENT_CREDENTIALS_MODE,
            expires_in_minutes=client.token_expiration_minutes,
            additional_claims={
                "client_id": client.client_id,
                "client_name": client.name,
                "scopes": scopes,
            },
        )
        logger.info("Issued client-credentials token for %s", client.client_id)
        return {
            "access_token": token,
            "token_type": "Bearer",
            "expires_in": expires_in,
            "scope": " ".join(scopes),
        }

    def generate_static_api_key(
        self, client: OAuthClient, expiration_days: int = 365
    ) -> dict[str, Any]:
        now = self.tokens.now()
        token, expires_in = self.tokens.generate_jwt(
            _client_principal(client),
            auth_mode=STATIC_KEY_MODE,
            expires_in_minutes=expiration_days * 24 * 60,
            additional_claims={
                "client_id": client.client_id,
                "client_name": client.name,
                "scopes": list(client.scopes),
                "static_key": True,
            },
        )
        logger.info("Issued static API key for %s (%d days)", client.client_id, expiration_days)
        return {
            "api_key": token,
            "token_type": "Bearer",
            "expires_in": expires_in,
            "expires_at": (now + timedelta(days=expiration_days)).isoformat(),
            "scope": " ".join(client.scopes),
        }

    def verify_oauth_token(self, token: str) -> dict[str, Any] | None:
        """Claims of a valid client token, an expiry marker, or None."""
        try:
            claims = self.tokens.validate_jwt(token)
        except jwt.ExpiredSignatureError:
            return {"error": "token_expired", "expired": True}
        except jwt.InvalidTokenError as exc:
            logger.debug("OAuth token rejected: %s", exc)
            return None
        if claims.get("authMode") not in CLIENT_MODES:
            return None
        return claims

    def introspect_oauth_token(self, token: str) -> dict[str, Any]:
        claims = self.verify_oauth_token(token)
        if claims is None:
            return {"active": False}
        if claims.get("expired"):
            return {"active": False, "error": "token_expired"}

        client_id = claims.get("client_id")
        if self.clients is not None and client_id:
            client = self.clients.get_client(client_id)
            if client is None or not client.active:
                return {"active": False}
        else:
            client = None

        scopes = claims.get("scopes") or []
        result: dict[str, Any] = {
            "active": True,
            "client_id": client_id,
            "client_name": claims.get("client_name"),
            "scopes": scopes,
            "scope": " ".join(scopes),
            "exp": claims.get("exp"),
            "iat": claims.get("iat"),
            "iss": claims.get("iss"),
            "aud": claims.get("aud"),
            "sub": claims.get("sub"),
            "token_type": "Bearer",
        }
        if client is not None:
            result["allowedApps"] = list(client.allowed_apps)
            result["allowedModels"] = list(client.allowed_models)
        return result

# OAuth2 Authorization Server.
# Created: 2026-10-08
#
# Drives the authorization-code (+PKCE), refresh-token and
# client-credentials grants over the code, refresh-token, consent and
# client stores. Failures raise OAuthError subclasses carrying the RFC 6749
# error code; the HTTP layer turns them into JSON error bodies.

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import jwt

from accessgate.auth.pkce import SUPPORTED_METHODS, verify_code_challenge
from accessgate.auth.tokens import TokenService, get_token_service
from accessgate.auth.users import AuthenticatedUser
from accessgate.config import Settings, get_settings
from accessgate.errors import (
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidScope,
    InvalidToken,
    UnauthorizedClient,
    UnsupportedResponseType,
)
from accessgate.oauth2.client_tokens import CLIENT_MODES, OAuthTokenService
from accessgate.oauth2.clients import OAuthClient, OAuthClientStore
from accessgate.oauth2.codes import AuthorizationCodeStore
from accessgate.oauth2.consent import ConsentStore
from accessgate.oauth2.refresh_tokens import RefreshTokenStore
from accessgate.security.audit import AuditLogger, AuditSeverity

logger = logging.getLogger(__name__)

AUTH_CODE_MODE = "oauth_authorization_code"
ID_TOKEN_MODE = "oidc_id_token"
DEFAULT_SCOPE = "openid"
OIDC_SCOPES = frozenset({"openid", "profile", "email", "offline_access"})


def at_hash(access_token: str) -> str:
    """OIDC ``at_hash``: left half of SHA-256, base64url without padding."""
    digest = hashlib.sha256(access_token.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest[:16]).rstrip(b"=").decode("ascii")


@dataclass
class AuthorizationRequest:
    """A validated ``/oauth/authorize`` request."""

    client: OAuthClient
    redirect_uri: str
    scopes: list[str]
    state: str = ""
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    nonce: str | None = None

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


class AuthorizationServer:
    """OAuth2 authorization server with PKCE."""

    def __init__(
        self,
        clients: OAuthClientStore | None = None,
        codes: AuthorizationCodeStore | None = None,
        refresh_tokens: RefreshTokenStore | None = None,
        consents: ConsentStore | None = None,
        tokens: TokenService | None = None,
        *,
        settings: Settings | None = None,
        audit: AuditLogger | None = None,
    ):
        self.settings = settings or get_settings()
        self.audit = audit
        self.clients = clients or OAuthClientStore(audit=audit)
        self.codes = codes or AuthorizationCodeStore(
            ttl=timedelta(minutes=self.settings.auth_code_ttl_minutes), audit=audit
        )
        self.refresh_tokens = refresh_tokens or RefreshTokenStore(audit=audit)
        self.consents = consents or ConsentStore(audit=audit)
        self.tokens = tokens or get_token_service()
        self.client_tokens = OAuthTokenService(self.tokens, self.clients)

    # ------------------------------------------------------------------
    # Client authentication
    # ------------------------------------------------------------------

    def authenticate_client(self, client_id: str | None, client_secret: str | None) -> OAuthClient:
        client = self.clients.validate_client_credentials(client_id or "", client_secret or "")
        if client is None:
            raise InvalidClient("Client authentication failed")
        return client

    def _active_client(self, client_id: str | None) -> OAuthClient:
        client = self.clients.get_client(client_id) if client_id else None
        if client is None or not client.active:
            raise InvalidClient("Unknown or inactive client")
        return client

    # ------------------------------------------------------------------
    # Authorization endpoint
    # ------------------------------------------------------------------

    def validate_authorization_request(
        self,
        *,
        response_type: str,
        client_id: str,
        redirect_uri: str,
        scope: str | None = None,
        state: str = "",
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        nonce: str | None = None,
    ) -> AuthorizationRequest:
        if response_type != "code":
            raise UnsupportedResponseType("Only response_type=code is supported")

        client = self._active_client(client_id)
        if "authorization_code" not in client.grant_types:
            raise UnauthorizedClient("Client is not allowed to use the authorization_code grant")
        if not redirect_uri or redirect_uri not in client.redirect_uris:
            raise InvalidRequest("redirect_uri is not registered for this client")

        if code_challenge:
            code_challenge_method = code_challenge_method or "S256"
            if code_challenge_method not in SUPPORTED_METHODS:
                raise InvalidRequest("code_challenge_method must be S256")
        elif client.is_public:
            raise InvalidRequest("Public clients must use PKCE (S256)")

        scopes = (scope or DEFAULT_SCOPE).split()
        allowed = set(client.scopes) | OIDC_SCOPES
        if client.scopes and not set(scopes).issubset(allowed):
            raise InvalidScope("Requested scope exceeds the client's allowed scopes")

        return AuthorizationRequest(
            client=client,
            redirect_uri=redirect_uri,
            scopes=scopes,
            state=state,
            code_challenge=code_challenge or None,
            code_challenge_method=code_challenge_method if code_challenge else None,
            nonce=nonce or None,
        )

    def needs_consent(self, client: OAuthClient, user_id: str, scopes: list[str]) -> bool:
        if not client.consent_required:
            return False
        return not self.consents.has_consent(client.client_id, user_id, scopes)

    def record_consent(self, client_id: str, user_id: str, scopes: list[str]) -> None:
        self.consents.grant_consent(
            client_id, user_id, scopes, ttl_days=self.settings.consent_ttl_days
        )

    def issue_code(self, request: AuthorizationRequest, user: AuthenticatedUser) -> str:
        code = self.codes.generate_code()
        self.codes.store_code(
            code,
            {
                "clientId": request.client.client_id,
                "redirectUri": request.redirect_uri,
                "userId": user.id,
                "userName": user.name,
                "userEmail": user.email,
                "userGroups": list(user.groups),
                "scopes": list(request.scopes),
                "codeChallenge": request.code_challenge,
                "codeChallengeMethod": request.code_challenge_method,
                "nonce": request.nonce,
            },
        )
        logger.info("Issued authorization code: user %s → client %s", user.id, request.client.client_id)
        return code

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def _user_tokens(
        self, client: OAuthClient, data: dict[str, Any], *, with_id_token: bool, nonce: str | None = None
    ) -> dict[str, Any]:
        principal = {
            "id": data.get("userId"),
            "name": data.get("userName"),
            "email": data.get("userEmail"),
            "groups": data.get("userGroups") or [],
            "provider": "oauth",
        }
        scopes = list(data.get("scopes") or [])
        access_token, expires_in = self.tokens.generate_jwt(
            principal,
            auth_mode=AUTH_CODE_MODE,
            expires_in_minutes=client.token_expiration_minutes,
            additional_claims={"aud": client.client_id, "client_id": client.client_id, "scopes": scopes},
        )
        response: dict[str, Any] = {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": expires_in,
            "scope": " ".join(scopes),
        }

        if with_id_token and "openid" in scopes:
            id_claims: dict[str, Any] = {"aud": client.client_id, "at_hash": at_hash(access_token)}
            if nonce:
                id_claims["nonce"] = nonce
            response["id_token"], _ = self.tokens.generate_jwt(
                principal,
                auth_mode=ID_TOKEN_MODE,
                expires_in_minutes=client.token_expiration_minutes,
                additional_claims=id_claims,
            )

        if "refresh_token" in client.grant_types:
            refresh_token = self.refresh_tokens.generate_refresh_token()
            self.refresh_tokens.store_refresh_token(
                refresh_token,
                {
                    "clientId": client.client_id,
                    "userId": data.get("userId"),
                    "userName": data.get("userName"),
                    "userEmail": data.get("userEmail"),
                    "userGroups": data.get("userGroups") or [],
                    "scopes": scopes,
                },
                ttl_days=self.settings.refresh_token_ttl_days,
            )
            response["refresh_token"] = refresh_token
        return response

    def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
    ) -> dict[str, Any]:
        """Authorization-code grant. Returns the token response body."""
        if not code or not client_id:
            raise InvalidRequest("code and client_id are required")

        client = self._active_client(client_id)
        if not client.is_public:
            self.authenticate_client(client_id, client_secret)

        data = self.codes.consume_code(code)
        if data is None:
            raise InvalidGrant("Authorization code is invalid, expired or already used")
        if data.get("clientId") != client_id:
            raise InvalidGrant("Authorization code was issued to another client")
        if data.get("redirectUri") != redirect_uri:
            raise InvalidGrant("redirect_uri does not match the authorization request")

        challenge = data.get("codeChallenge")
        if challenge:
            if not code_verifier or not verify_code_challenge(
                code_verifier, challenge, data.get("codeChallengeMethod") or "S256"
            ):
                raise InvalidGrant("PKCE verification failed")
        elif client.is_public:
            raise InvalidGrant("Public clients must use PKCE")

        response = self._user_tokens(client, data, with_id_token=True, nonce=data.get("nonce"))
        logger.info("Exchanged authorization code: user %s → client %s", data.get("userId"), client_id)
        if self.audit is not None:
            self.audit.record(
                "oauth_token_issued",
                f"client:{client_id}",
                actor=data.get("userId") or "unknown",
                grant="authorization_code",
                scope=response["scope"],
            )
        return response

    def refresh(
        self,
        refresh_token: str,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> dict[str, Any]:
        """Refresh-token grant. The presented token is consumed and replaced."""
        if not refresh_token:
            raise InvalidRequest("refresh_token is required")

        if client_id:
            client = self._active_client(client_id)
            if not client.is_public and client_secret is not None:
                self.authenticate_client(client_id, client_secret)

        data = self.refresh_tokens.consume_refresh_token(refresh_token)
        if data is None:
            raise InvalidGrant("Refresh token is invalid or expired")
        if client_id and data.get("clientId") != client_id:
            if self.audit is not None:
                self.audit.record(
                    "oauth_refresh_client_mismatch",
                    f"client:{client_id}",
                    status="denied",
                    severity=AuditSeverity.ALERT,
                )
            raise InvalidGrant("Refresh token was issued to another client")

        client = self._active_client(data.get("clientId"))
        response = self._user_tokens(client, data, with_id_token=False)
        logger.info("Rotated refresh token for client %s user %s", client.client_id, data.get("userId"))
        return response

    def client_credentials(
        self, client_id: str | None, client_secret: str | None, scope: str | None = None
    ) -> dict[str, Any]:
        client = self.authenticate_client(client_id, client_secret)
        if "client_credentials" not in client.grant_types:
            raise UnauthorizedClient("Client is not allowed to use the client_credentials grant")
        response = self.client_tokens.generate_oauth_token(client, scope)
        if self.audit is not None:
            self.audit.record(
                "oauth_token_issued",
                f"client:{client.client_id}",
                actor=client.client_id,
                grant="client_credentials",
                scope=response["scope"],
            )
        return response

    # ------------------------------------------------------------------
    # Revocation / introspection / userinfo
    # ------------------------------------------------------------------

    def revoke(self, token: str) -> None:
        """RFC 7009: succeeds whether or not the token was known.

        Access tokens are self-contained JWTs and expire on their own; only
        refresh tokens have server-side state to drop.
        """
        if token and self.refresh_tokens.revoke_refresh_token(token):
            logger.info("Refresh token revoked")

    def introspect(self, token: str) -> dict[str, Any]:
        claims = self.tokens.decode_jwt(token) if token else None
        if claims is None:
            return {"active": False}

        mode = claims.get("authMode")
        if mode in CLIENT_MODES:
            return self.client_tokens.introspect_oauth_token(token)
        if mode != AUTH_CODE_MODE:
            return {"active": False}

        try:
            verified = self.tokens.validate_jwt(token, audience=claims.get("client_id"))
        except jwt.ExpiredSignatureError:
            return {"active": False, "error": "token_expired"}
        except jwt.InvalidTokenError:
            return {"active": False}

        scopes = verified.get("scopes") or []
        return {
            "active": True,
            "client_id": verified.get("client_id"),
            "sub": verified.get("sub"),
            "username": verified.get("name"),
            "scopes": scopes,
            "scope": " ".join(scopes),
            "exp": verified.get("exp"),
            "iat": verified.get("iat"),
            "iss": verified.get("iss"),
            "aud": verified.get("aud"),
            "token_type": "Bearer",
        }

    def userinfo(self, token: str) -> dict[str, Any]:
        claims = self.tokens.decode_jwt(token) if token else None
        if claims is None or claims.get("authMode") != AUTH_CODE_MODE:
            raise InvalidToken("An authorization_code access token is required")
        verified = self.tokens.verify_jwt(token, audience=claims.get("client_id"))
        if verified is None:
            raise InvalidToken("Access token is invalid or expired")

        scopes = set(verified.get("scopes") or [])
        info: dict[str, Any] = {"sub": verified.get("sub")}
        if "profile" in scopes or "openid" in scopes:
            info["name"] = verified.get("name")
            info["groups"] = verified.get("groups") or []
        if "email" in scopes or "openid" in scopes:
            info["email"] = verified.get("email")
        return info


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        from accessgate.security.audit import get_audit_logger

        _server = AuthorizationServer(audit=get_audit_logger())
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None

# Discovery documents — OpenID configuration and JWKS.
# Created: 2026-10-09

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Discovery"])


@router.get("/.well-known/openid-configuration")
async def openid_configuration(request: Request):
    from accessgate.auth.tokens import get_token_service

    tokens = get_token_service()
    base = str(request.base_url).rstrip("/") + "/api/v1"
    return {
        "issuer": tokens.issuer,
        "authorization_endpoint": f"{base}/oauth/authorize",
        "token_endpoint": f"{base}/oauth/token",
        "userinfo_endpoint": f"{base}/oauth/userinfo",
        "introspection_endpoint": f"{base}/oauth/introspect",
        "revocation_endpoint": f"{base}/oauth/revoke",
        "jwks_uri": f"{base}/.well-known/jwks.json",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token", "client_credentials"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": [tokens.algorithm],
        "scopes_supported": ["openid", "profile", "email"],
        "token_endpoint_auth_methods_supported": [
            "client_secret_basic",
            "client_secret_post",
            "none",
        ],
        "code_challenge_methods_supported": ["S256"],
        "claims_supported": ["sub", "name", "email", "groups", "iss", "aud", "exp", "iat"],
    }


@router.get("/.well-known/jwks.json")
async def jwks():
    """Public signing keys. Empty for HS256 deployments."""
    from accessgate.auth.tokens import get_token_service

    return get_token_service().jwks()

# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-09

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request

from accessgate.auth.users import AuthenticatedUser

logger = logging.getLogger(__name__)

SESSION_COOKIE = "authToken"

# Tokens minted for OAuth relying parties never open a platform session
_NON_SESSION_MODES = frozenset(
    {
        "oauth_client_credentials",
        "oauth_static_api_key",
        "oauth_authorization_code",
        "oidc_id_token",
    }
)


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.removeprefix("Bearer ").strip()
    return ""


def session_claims(request: Request) -> dict[str, Any] | None:
    """Verified claims of the caller's platform session, from header or cookie."""
    from accessgate.auth.tokens import get_token_service

    token = bearer_token(request) or request.cookies.get(SESSION_COOKIE, "")
    if not token:
        return None
    claims = get_token_service().verify_jwt(token)
    if claims is None or claims.get("authMode") in _NON_SESSION_MODES:
        return None
    return claims


def session_user(request: Request) -> AuthenticatedUser | None:
    """The caller's session, checked against the current user record."""
    from accessgate.auth.users import get_user_manager

    claims = session_claims(request)
    if claims is None:
        return None
    user = get_user_manager().session_from_claims(claims)
    if user is None:
        logger.info("Session for %s refused: user missing or disabled", claims.get("sub"))
    return user


async def require_user(request: Request) -> AuthenticatedUser:
    user = session_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


async def require_admin(request: Request) -> AuthenticatedUser:
    """FastAPI dependency: a session whose groups resolve to adminAccess.

    Usage::

        @router.get("/admin/users", dependencies=[Depends(require_admin)])
    """
    from accessgate.auth.users import get_user_manager

    user = await require_user(request)
    if not get_user_manager().resolver.has_admin_access(user.groups):
        logger.info("Admin access denied for %s", user.id)
        raise HTTPException(status_code=403, detail="Admin access required")
    return user

# Auth router — local login, logout, current session.
# Created: 2026-10-09

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from accessgate.api.deps import SESSION_COOKIE, require_user
from accessgate.api.v1.schemas.auth import LoginRequest, LoginResponse
from accessgate.auth.users import AuthenticatedUser
from accessgate.errors import AccountDisabled, InvalidCredentials

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


@router.post("/auth/login", response_model=LoginResponse)
async def local_login(body: LoginRequest):
    """Username/password login. Sets the session cookie and returns the JWT."""
    from accessgate.auth.tokens import get_token_service
    from accessgate.auth.users import get_user_manager
    from accessgate.config import get_settings

    manager = get_user_manager()
    local = manager.config_cache.get_platform().get("localAuth") or {}
    if local.get("enabled") is False:
        raise HTTPException(status_code=403, detail="Local authentication is disabled")

    try:
        user = manager.authenticate_local(body.username, body.password)
    except InvalidCredentials:
        raise HTTPException(status_code=401, detail="Invalid credentials") from None
    except AccountDisabled:
        raise HTTPException(status_code=403, detail="Account is disabled") from None

    token, expires_in = get_token_service().generate_jwt(
        user,
        auth_mode="local",
        expires_in_minutes=local.get("sessionTimeoutMinutes"),
    )
    payload = LoginResponse(
        token=token,
        expires_in=expires_in,
        user={
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "groups": user.groups,
            "permissions": manager.resolver.get_permissions_for_user(user.groups).to_dict(),
        },
    )
    response = JSONResponse(content=payload.model_dump())
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=get_settings().cookie_secure,
        samesite="lax",
        path="/",
        max_age=expires_in,
    )
    return response


@router.post("/auth/logout")
async def logout():
    response = JSONResponse(content={"ok": True})
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response


@router.get("/auth/me")
async def whoami(user: AuthenticatedUser = Depends(require_user)):
    """The caller's session and effective permissions."""
    from accessgate.auth.users import get_user_manager

    perms = get_user_manager().resolver.get_permissions_for_user(user.groups)
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "groups": user.groups,
        "provider": user.provider,
        "permissions": perms.to_dict(),
    }

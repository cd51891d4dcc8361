# Admin router — OAuth client registry and user administration.
# Created: 2026-10-09
#
# Every route requires a session whose groups resolve to adminAccess.

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from accessgate.api.deps import require_admin
from accessgate.api.v1.schemas.admin import (
    ClientCreate,
    ClientUpdate,
    StaticKeyRequest,
    UserGroupsUpdate,
)
from accessgate.auth.users import AuthenticatedUser
from accessgate.errors import ClientNotFound, LastAdminError, UserNotFound

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"], dependencies=[Depends(require_admin)])


def _server():
    from accessgate.oauth2.server import get_oauth_server

    return get_oauth_server()


def _users():
    from accessgate.auth.users import get_user_manager

    return get_user_manager()


def _last_admin(exc: LastAdminError) -> HTTPException:
    logger.warning("Refused: %s", exc)
    return HTTPException(
        status_code=409, detail="Cannot remove admin rights from the last administrator"
    )


# ---------------------------------------------------------------------------
# OAuth clients
# ---------------------------------------------------------------------------


@router.get("/admin/oauth/clients")
async def list_clients():
    return {"clients": [c.to_public() for c in _server().clients.list_clients()]}


@router.post("/admin/oauth/clients", status_code=201)
async def create_client(body: ClientCreate, admin: AuthenticatedUser = Depends(require_admin)):
    """Register a client. The secret is only ever returned here."""
    client, secret = _server().clients.create_oauth_client(body.to_store(), created_by=admin.id)
    result = {"client": client.to_public()}
    if secret is not None:
        result["clientSecret"] = secret
    return result


@router.get("/admin/oauth/clients/{client_id}")
async def get_client(client_id: str):
    client = _server().clients.get_client(client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client.to_public()


@router.put("/admin/oauth/clients/{client_id}")
async def update_client(
    client_id: str, body: ClientUpdate, admin: AuthenticatedUser = Depends(require_admin)
):
    try:
        client = _server().clients.update_oauth_client(
            client_id, body.to_store(), updated_by=admin.id
        )
    except ClientNotFound:
        raise HTTPException(status_code=404, detail="Client not found") from None
    return client.to_public()


@router.delete("/admin/oauth/clients/{client_id}")
async def delete_client(client_id: str, admin: AuthenticatedUser = Depends(require_admin)):
    server = _server()
    try:
        server.clients.delete_oauth_client(client_id, deleted_by=admin.id)
    except ClientNotFound:
        raise HTTPException(status_code=404, detail="Client not found") from None
    dropped = server.refresh_tokens.revoke_for_client(client_id)
    return {"deleted": True, "revokedRefreshTokens": dropped}


@router.post("/admin/oauth/clients/{client_id}/rotate-secret")
async def rotate_secret(client_id: str, admin: AuthenticatedUser = Depends(require_admin)):
    try:
        cid, secret, rotated_at = _server().clients.rotate_client_secret(
            client_id, rotated_by=admin.id
        )
    except ClientNotFound:
        raise HTTPException(status_code=404, detail="Client not found") from None
    return {"clientId": cid, "clientSecret": secret, "rotatedAt": rotated_at}


@router.post("/admin/oauth/clients/{client_id}/api-key")
async def create_static_key(client_id: str, body: StaticKeyRequest | None = None):
    """Issue a long-lived static API key for a client."""
    server = _server()
    client = server.clients.get_client(client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    if not client.active:
        raise HTTPException(status_code=400, detail="Client is inactive")
    days = body.expiration_days if body is not None else 365
    return server.client_tokens.generate_static_api_key(client, expiration_days=days)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/admin/users")
async def list_users():
    return {"users": [u.to_public() for u in _users().store.all()]}


@router.put("/admin/users/{user_id}/groups")
async def set_user_groups(
    user_id: str, body: UserGroupsUpdate, admin: AuthenticatedUser = Depends(require_admin)
):
    try:
        user = _users().set_internal_groups(user_id, body.internal_groups, updated_by=admin.id)
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found") from None
    except LastAdminError as exc:
        raise _last_admin(exc) from None
    return user.to_public()


@router.post("/admin/users/{user_id}/disable")
async def disable_user(user_id: str, admin: AuthenticatedUser = Depends(require_admin)):
    try:
        user = _users().set_active(user_id, False, updated_by=admin.id)
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found") from None
    except LastAdminError as exc:
        raise _last_admin(exc) from None
    return user.to_public()


@router.post("/admin/users/{user_id}/enable")
async def enable_user(user_id: str, admin: AuthenticatedUser = Depends(require_admin)):
    try:
        user = _users().set_active(user_id, True, updated_by=admin.id)
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found") from None
    return user.to_public()


@router.delete("/admin/users/{user_id}")
async def delete_user(user_id: str, admin: AuthenticatedUser = Depends(require_admin)):
    try:
        _users().delete_user(user_id, deleted_by=admin.id)
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found") from None
    except LastAdminError as exc:
        raise _last_admin(exc) from None
    return {"deleted": True}

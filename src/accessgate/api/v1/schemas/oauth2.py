# OAuth2 schemas.
# Created: 2026-10-09

from __future__ import annotations

from pydantic import BaseModel, Field


class TokenRequest(BaseModel):
    """Token endpoint request (form or JSON body)."""

    grant_type: str = Field(..., pattern="^(authorization_code|refresh_token|client_credentials)$")
    code: str | None = None
    code_verifier: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str | None = None
    refresh_token: str | None = None
    scope: str | None = None


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    refresh_token: str | None = None
    id_token: str | None = None


class TokenParam(BaseModel):
    """Body of the revocation and introspection endpoints."""

    token: str = ""
    token_type_hint: str | None = None
    client_id: str | None = None
    client_secret: str | None = None

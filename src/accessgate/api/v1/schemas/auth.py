# Auth schemas.
# Created: 2026-10-09

from __future__ import annotations

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Local username/password login."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    token: str
    expires_in: int
    user: dict

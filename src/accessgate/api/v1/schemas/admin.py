# Admin schemas.
# Created: 2026-10-09
#
# Field names follow the camelCase used in the JSON stores.

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class ClientCreate(_CamelModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    client_type: Literal["confidential", "public"] = "confidential"
    redirect_uris: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(default_factory=lambda: ["client_credentials"])
    consent_required: bool = True
    scopes: list[str] = Field(default_factory=list)
    allowed_apps: list[str] = Field(default_factory=list)
    allowed_models: list[str] = Field(default_factory=list)
    token_expiration_minutes: int = Field(60, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ClientUpdate(_CamelModel):
    name: str | None = None
    description: str | None = None
    client_type: Literal["confidential", "public"] | None = None
    redirect_uris: list[str] | None = None
    grant_types: list[str] | None = None
    consent_required: bool | None = None
    scopes: list[str] | None = None
    allowed_apps: list[str] | None = None
    allowed_models: list[str] | None = None
    token_expiration_minutes: int | None = Field(None, ge=1)
    active: bool | None = None
    metadata: dict[str, Any] | None = None


class StaticKeyRequest(_CamelModel):
    expiration_days: int = Field(365, ge=1, le=3650)


class UserGroupsUpdate(_CamelModel):
    internal_groups: list[str]

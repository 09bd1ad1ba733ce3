from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from teamrbac.core.roles import TeamRole


class PermissionDefinitionOut(BaseModel):
    id: str
    description: str
    default_roles: List[TeamRole]


class RoleRankOut(BaseModel):
    role: TeamRole
    rank: int


class AvailablePermissionsOut(BaseModel):
    permissions: List[PermissionDefinitionOut]
    roles: List[TeamRole]
    role_hierarchy: List[RoleRankOut]


class PermissionGrantOut(BaseModel):
    permission: str
    granted: bool
    is_override: bool
    expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RolePermissionsOut(BaseModel):
    team_id: str
    role: TeamRole
    permissions: List[PermissionGrantOut]
    count: int


class TeamPermissionsOut(BaseModel):
    team_id: str
    roles: Dict[TeamRole, List[PermissionGrantOut]]


def _future_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return v
    if v.tzinfo is None:
        v = v.replace(tzinfo=timezone.utc)
    v = v.astimezone(timezone.utc)
    if v <= datetime.now(timezone.utc):
        raise ValueError("expires_at must be in the future")
    return v


class PermissionUpdate(BaseModel):
    permission: str = Field(..., description="Permission id from /permissions/available")
    granted: bool
    expires_at: Optional[datetime] = Field(default=None, description="Optional expiry for this override")

    @field_validator("expires_at")
    @classmethod
    def _expires_in_future(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _future_utc(v)


class RolePermissionsUpdate(BaseModel):
    permissions: List[PermissionUpdate] = Field(..., min_length=1)
    expires_at: Optional[datetime] = Field(
        default=None,
        description="Expiry for overrides in this request that don't set their own",
    )

    @field_validator("expires_at")
    @classmethod
    def _expires_in_future(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _future_utc(v)


class InitializeDefaultsOut(BaseModel):
    team_id: str
    inserted: int


class UserPermissionsOut(BaseModel):
    team_id: str
    user_id: str
    role: TeamRole
    permissions: List[str]
    count: int


class PermissionCheckOut(BaseModel):
    team_id: str
    role: TeamRole
    permission: str
    granted: bool

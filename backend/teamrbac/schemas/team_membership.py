from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from teamrbac.core.roles import TeamRole


class TeamMemberOut(BaseModel):
    team_id: str
    user_id: str
    role: TeamRole
    joined_at: datetime

    model_config = {"from_attributes": True}


class TeamMemberCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    role: TeamRole = Field(default=TeamRole.MEMBER, description="admin, moderator or member")


class TeamMemberRoleUpdate(BaseModel):
    role: TeamRole


class OwnershipTransferIn(BaseModel):
    new_owner_id: str = Field(..., min_length=1, max_length=64)


class OwnershipTransferOut(BaseModel):
    team_id: str
    owner_id: str
    previous_owner_id: str
    previous_owner_role: TeamRole


class MembershipCheckOut(BaseModel):
    team_id: str
    user_id: str
    is_member: bool
    role: Optional[TeamRole] = None


class MemberRoleOut(BaseModel):
    team_id: str
    user_id: str
    role: TeamRole


class UserTeamsOut(BaseModel):
    user_id: str
    teams: List[TeamMemberOut]
    count: int

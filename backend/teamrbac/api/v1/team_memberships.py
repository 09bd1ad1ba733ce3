# teamrbac/api/v1/team_memberships.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from teamrbac.api.deps.team import (
    get_actor_id,
    get_team_authorizer,
    require_team_owner,
    require_team_permission,
)
from teamrbac.auth.permissions import PERM
from teamrbac.core.config import settings
from teamrbac.core.errors import InsufficientAuthority, SelfManagement, TargetNotMember
from teamrbac.core.team_rbac import AccessContext, TeamAuthorizer
from teamrbac.crud import team_membership as membership_store
from teamrbac.crud.team_permission import can_manage_role
from teamrbac.db.session import get_db
from teamrbac.schemas.team_membership import (
    MemberRoleOut,
    MembershipCheckOut,
    OwnershipTransferIn,
    OwnershipTransferOut,
    TeamMemberCreate,
    TeamMemberOut,
    TeamMemberRoleUpdate,
    UserTeamsOut,
)

router = APIRouter(prefix="/teams/{team_id}", tags=["team-memberships"])
user_router = APIRouter(prefix="/users", tags=["team-memberships"])


@router.get("/members", response_model=List[TeamMemberOut])
async def list_team_members(
    team_id: str,
    db: AsyncSession = Depends(get_db),
    _ctx: AccessContext = Depends(require_team_permission(PERM.MEMBERS_VIEW)),
):
    return await membership_store.list_members(db, team_id)


@router.get("/members/{user_id}/check", response_model=MembershipCheckOut)
async def check_team_membership(
    team_id: str,
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _ctx: AccessContext = Depends(require_team_permission(PERM.MEMBERS_VIEW)),
):
    role = await membership_store.get_user_role(db, team_id, user_id)
    return MembershipCheckOut(team_id=team_id, user_id=user_id, is_member=role is not None, role=role)


@router.get("/members/{user_id}/role", response_model=MemberRoleOut)
async def get_member_role(
    team_id: str,
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _ctx: AccessContext = Depends(require_team_permission(PERM.MEMBERS_VIEW)),
):
    role = await membership_store.get_user_role(db, team_id, user_id)
    if role is None:
        raise TargetNotMember(team_id=team_id, user_id=user_id)
    return MemberRoleOut(team_id=team_id, user_id=user_id, role=role)


@router.post("/members", response_model=TeamMemberOut, status_code=status.HTTP_201_CREATED)
async def add_team_member(
    team_id: str,
    payload: TeamMemberCreate,
    db: AsyncSession = Depends(get_db),
    ctx: AccessContext = Depends(require_team_permission(PERM.TEAM_INVITE)),
):
    # inviters can only bring people in below their own rank
    if not can_manage_role(ctx.role, payload.role):
        raise InsufficientAuthority(
            f"You cannot add members as {payload.role.value}.",
            role=ctx.role.value,
            requested_role=payload.role.value,
        )
    return await membership_store.add_member(db, team_id, payload.user_id, payload.role)


@router.put("/members/{user_id}/role", response_model=TeamMemberOut)
async def update_member_role(
    team_id: str,
    user_id: str,
    payload: TeamMemberRoleUpdate,
    db: AsyncSession = Depends(get_db),
    authz: TeamAuthorizer = Depends(get_team_authorizer),
    ctx: AccessContext = Depends(require_team_permission(PERM.ROLES_MANAGE)),
):
    await authz.require_role_assignment(team_id, ctx.user_id, user_id, payload.role)
    await membership_store.set_user_role(db, team_id, user_id, payload.role)
    return await membership_store.get_membership(db, team_id, user_id)


@router.delete("/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_team_member(
    team_id: str,
    user_id: str,
    db: AsyncSession = Depends(get_db),
    authz: TeamAuthorizer = Depends(get_team_authorizer),
    ctx: AccessContext = Depends(require_team_permission(PERM.MEMBERS_REMOVE)),
):
    await authz.require_role_management(team_id, ctx.user_id, user_id)
    await membership_store.remove_membership(db, team_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_team(
    team_id: str,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    await membership_store.remove_membership(db, team_id, actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/ownership/transfer", response_model=OwnershipTransferOut)
async def transfer_team_ownership(
    team_id: str,
    payload: OwnershipTransferIn,
    db: AsyncSession = Depends(get_db),
    ctx: AccessContext = Depends(require_team_owner()),
):
    if payload.new_owner_id == ctx.user_id:
        raise SelfManagement("You already own this team.", team_id=team_id, user_id=ctx.user_id)

    await membership_store.transfer_ownership(db, team_id, ctx.user_id, payload.new_owner_id)
    return OwnershipTransferOut(
        team_id=team_id,
        owner_id=payload.new_owner_id,
        previous_owner_id=ctx.user_id,
        previous_owner_role=settings.OWNER_SUCCESSOR_ROLE,
    )


@user_router.get("/me/teams", response_model=UserTeamsOut)
async def list_my_teams(
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    memberships = await membership_store.list_user_teams(db, actor_id)
    return UserTeamsOut(
        user_id=actor_id,
        teams=[TeamMemberOut.model_validate(m) for m in memberships],
        count=len(memberships),
    )

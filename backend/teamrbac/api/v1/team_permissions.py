# teamrbac/api/v1/team_permissions.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from teamrbac.api.deps.team import (
    get_actor_id,
    get_team_authorizer,
    require_team_owner,
    require_team_permission,
)
from teamrbac.auth.permissions import DEFAULT_CATALOG, PERM
from teamrbac.core.errors import InsufficientAuthority, NotATeamMember, TargetNotMember
from teamrbac.core.roles import ROLE_HIERARCHY, ROLE_RANKS, TeamRole
from teamrbac.core.team_rbac import AccessContext, TeamAuthorizer
from teamrbac.crud import team_permission as permission_store
from teamrbac.db.session import get_db
from teamrbac.schemas.team_permission import (
    AvailablePermissionsOut,
    InitializeDefaultsOut,
    PermissionCheckOut,
    PermissionDefinitionOut,
    PermissionGrantOut,
    RolePermissionsOut,
    RolePermissionsUpdate,
    RoleRankOut,
    TeamPermissionsOut,
    UserPermissionsOut,
)

router = APIRouter(tags=["team-permissions"])


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------
def _check_known_permissions(permissions: List[str]) -> None:
    # client input, so a 400 rather than the 500 UnknownPermission maps to
    unknown = [p for p in permissions if not DEFAULT_CATALOG.is_valid_permission(p)]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "unknown_permission", "message": "Unknown permission id(s).", "unknown": unknown},
        )


def _require_manageable(ctx: AccessContext, role: TeamRole) -> None:
    if not permission_store.can_manage_role(ctx.role, role):
        raise InsufficientAuthority(
            f"You cannot change permissions of the {role.value} role.",
            role=ctx.role.value,
            target_role=role.value,
        )


def _grants_out(grants) -> List[PermissionGrantOut]:
    return [PermissionGrantOut.model_validate(g) for g in grants]


# ---------------------------------------------------------
# Catalog
# ---------------------------------------------------------
@router.get("/permissions/available", response_model=AvailablePermissionsOut)
async def get_available_permissions():
    return AvailablePermissionsOut(
        permissions=[
            PermissionDefinitionOut(
                id=d.id,
                description=d.description,
                default_roles=[r for r in ROLE_HIERARCHY if r in d.default_roles],
            )
            for d in DEFAULT_CATALOG.list_permissions()
        ],
        roles=list(ROLE_HIERARCHY),
        role_hierarchy=[RoleRankOut(role=r, rank=ROLE_RANKS[r]) for r in ROLE_HIERARCHY],
    )


# ---------------------------------------------------------
# Team grant table
# ---------------------------------------------------------
@router.get("/teams/{team_id}/permissions", response_model=TeamPermissionsOut)
async def get_team_permissions(
    team_id: str,
    db: AsyncSession = Depends(get_db),
    _ctx: AccessContext = Depends(require_team_permission(PERM.MEMBERS_VIEW)),
):
    resolved = await permission_store.get_team_permissions(db, team_id)
    return TeamPermissionsOut(
        team_id=team_id,
        roles={role: _grants_out(grants) for role, grants in resolved.items()},
    )


@router.get("/teams/{team_id}/roles/{role}/permissions", response_model=RolePermissionsOut)
async def get_role_permissions(
    team_id: str,
    role: TeamRole,
    db: AsyncSession = Depends(get_db),
    _ctx: AccessContext = Depends(require_team_permission(PERM.MEMBERS_VIEW)),
):
    grants = await permission_store.get_permissions_for_role(db, team_id, role)
    return RolePermissionsOut(team_id=team_id, role=role, permissions=_grants_out(grants), count=len(grants))


@router.put("/teams/{team_id}/roles/{role}/permissions", response_model=RolePermissionsOut)
async def update_role_permissions(
    team_id: str,
    role: TeamRole,
    payload: RolePermissionsUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: AccessContext = Depends(require_team_permission(PERM.TEAM_MANAGE)),
):
    _require_manageable(ctx, role)
    _check_known_permissions([p.permission for p in payload.permissions])

    await permission_store.set_role_permissions(
        db,
        team_id,
        role,
        [(p.permission, p.granted, p.expires_at) for p in payload.permissions],
        granted_by=ctx.user_id,
        expires_at=payload.expires_at,
    )
    grants = await permission_store.get_permissions_for_role(db, team_id, role)
    return RolePermissionsOut(team_id=team_id, role=role, permissions=_grants_out(grants), count=len(grants))


@router.delete(
    "/teams/{team_id}/roles/{role}/permissions/{permission}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def reset_role_permission(
    team_id: str,
    role: TeamRole,
    permission: str,
    db: AsyncSession = Depends(get_db),
    ctx: AccessContext = Depends(require_team_permission(PERM.TEAM_MANAGE)),
):
    _require_manageable(ctx, role)
    _check_known_permissions([permission])

    removed = await permission_store.reset_permission(db, team_id, role, permission)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No override exists for this permission")


@router.get("/teams/{team_id}/check/{role}/{permission}", response_model=PermissionCheckOut)
async def check_role_permission(
    team_id: str,
    role: TeamRole,
    permission: str,
    db: AsyncSession = Depends(get_db),
    _ctx: AccessContext = Depends(require_team_permission(PERM.MEMBERS_VIEW)),
):
    _check_known_permissions([permission])
    granted = await permission_store.has_permission(db, team_id, role, permission)
    return PermissionCheckOut(team_id=team_id, role=role, permission=permission, granted=granted)


@router.post("/teams/{team_id}/permissions/initialize", response_model=InitializeDefaultsOut)
async def initialize_default_permissions(
    team_id: str,
    db: AsyncSession = Depends(get_db),
    ctx: AccessContext = Depends(require_team_owner()),
):
    inserted = await permission_store.initialize_defaults(db, team_id, granted_by=ctx.user_id)
    return InitializeDefaultsOut(team_id=team_id, inserted=inserted)


# ---------------------------------------------------------
# Per-user resolution
# ---------------------------------------------------------
@router.get("/teams/{team_id}/me/permissions", response_model=UserPermissionsOut)
async def get_my_permissions(
    team_id: str,
    actor_id: str = Depends(get_actor_id),
    authz: TeamAuthorizer = Depends(get_team_authorizer),
):
    ctx = await authz.load_permissions(team_id, actor_id)
    if ctx is None:
        raise NotATeamMember(team_id=team_id, user_id=actor_id)
    return UserPermissionsOut(
        team_id=team_id,
        user_id=actor_id,
        role=ctx.role,
        permissions=list(ctx.permissions),
        count=len(ctx.permissions),
    )


@router.get("/teams/{team_id}/users/{user_id}/permissions", response_model=UserPermissionsOut)
async def get_user_permissions(
    team_id: str,
    user_id: str,
    authz: TeamAuthorizer = Depends(get_team_authorizer),
    _ctx: AccessContext = Depends(require_team_permission(PERM.MEMBERS_VIEW)),
):
    target = await authz.load_permissions(team_id, user_id)
    if target is None:
        raise TargetNotMember(team_id=team_id, user_id=user_id)
    return UserPermissionsOut(
        team_id=team_id,
        user_id=user_id,
        role=target.role,
        permissions=list(target.permissions),
        count=len(target.permissions),
    )

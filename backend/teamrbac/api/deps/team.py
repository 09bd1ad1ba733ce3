from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from teamrbac.auth.permissions import DEFAULT_CATALOG
from teamrbac.core.roles import TeamRole, parse_role
from teamrbac.core.team_rbac import AccessContext, TeamAuthorizer
from teamrbac.db.session import get_db


async def get_actor_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    """
    Authenticated user id, as forwarded by the gateway that verified the
    caller's token. Apps with their own auth override this dependency.
    """
    actor_id = (x_user_id or "").strip()
    if not actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return actor_id


async def get_team_authorizer(db: AsyncSession = Depends(get_db)) -> TeamAuthorizer:
    return TeamAuthorizer(db, DEFAULT_CATALOG)


def require_team_permission(permission: str) -> Callable:
    """
    Route guard for a single permission on the {team_id} in the path.
    Unknown ids fail at import time, not on the first request.
    """
    DEFAULT_CATALOG.validate(permission)

    async def _checker(
        team_id: str,
        actor_id: str = Depends(get_actor_id),
        authz: TeamAuthorizer = Depends(get_team_authorizer),
    ) -> AccessContext:
        return await authz.require_permission(team_id, actor_id, permission)

    return _checker


def require_any_team_permission(*permissions: str) -> Callable:
    """
    Passes if any one of `permissions` is granted; the returned context lists
    which ones were.
    """
    if not permissions:
        raise ValueError("require_any_team_permission needs at least one permission")
    for p in permissions:
        DEFAULT_CATALOG.validate(p)
    required = list(permissions)

    async def _checker(
        team_id: str,
        actor_id: str = Depends(get_actor_id),
        authz: TeamAuthorizer = Depends(get_team_authorizer),
    ) -> AccessContext:
        return await authz.require_any_permission(team_id, actor_id, required)

    return _checker


def require_team_role(minimum_role: TeamRole | str) -> Callable:
    minimum = parse_role(minimum_role)

    async def _checker(
        team_id: str,
        actor_id: str = Depends(get_actor_id),
        authz: TeamAuthorizer = Depends(get_team_authorizer),
    ) -> AccessContext:
        return await authz.require_role(team_id, actor_id, minimum)

    return _checker


def require_team_owner() -> Callable:
    return require_team_role(TeamRole.OWNER)

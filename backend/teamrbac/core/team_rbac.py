# backend/teamrbac/core/team_rbac.py
"""
Authorization engine: decides whether an already-authenticated actor may do
something inside one team.

Every check is read-then-decide. A denied check never writes anything. On
success the caller gets an AccessContext carrying the resolved role so that
downstream code does not look it up again.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from teamrbac.auth.permissions import DEFAULT_CATALOG, PermissionCatalog
from teamrbac.core.errors import (
    InsufficientAuthority,
    InsufficientPermission,
    InsufficientRole,
    NotATeamMember,
    PolicyDenied,
    SelfManagement,
    TargetNotMember,
)
from teamrbac.core.roles import TeamRole, parse_role, rank
from teamrbac.crud import team_membership as membership_store
from teamrbac.crud import team_permission as permission_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessContext:
    team_id: str
    user_id: str
    role: TeamRole
    # granted permissions relevant to the check that produced this context
    permissions: tuple[str, ...] = ()
    target_user_id: Optional[str] = None
    target_role: Optional[TeamRole] = None

    def has(self, permission: str) -> bool:
        return permission in self.permissions


@dataclass(frozen=True)
class Allow:
    context: AccessContext
    allowed: bool = True


@dataclass(frozen=True)
class Deny:
    reason: PolicyDenied
    allowed: bool = False

    @property
    def code(self) -> str:
        return self.reason.code


Decision = Union[Allow, Deny]


async def decide(check: Awaitable[AccessContext]) -> Decision:
    """
    Turn a require_* call into a value. Policy denials become Deny; config
    errors and StoreUnavailable still raise.
    """
    try:
        return Allow(await check)
    except PolicyDenied as exc:
        return Deny(exc)


class TeamAuthorizer:
    def __init__(self, db: AsyncSession, catalog: PermissionCatalog = DEFAULT_CATALOG) -> None:
        self.db = db
        self.catalog = catalog

    async def _actor_role(self, team_id: str, actor_id: str) -> TeamRole:
        role = await membership_store.get_user_role(self.db, team_id, actor_id)
        if role is None:
            logger.debug("deny: %s is not a member of team %s", actor_id, team_id)
            raise NotATeamMember(team_id=team_id, user_id=actor_id)
        return role

    async def require_permission(self, team_id: str, actor_id: str, permission: str) -> AccessContext:
        # unknown ids are a programming error, so fail before touching storage
        self.catalog.validate(permission)
        role = await self._actor_role(team_id, actor_id)

        if not await permission_store.has_permission(
            self.db, team_id, role, permission, catalog=self.catalog
        ):
            logger.debug("deny: %s (%s) lacks %s in team %s", actor_id, role.value, permission, team_id)
            raise InsufficientPermission(
                f"Insufficient permissions. Required: {permission}",
                required=[permission],
                role=role.value,
            )

        return AccessContext(team_id=team_id, user_id=actor_id, role=role, permissions=(permission,))

    async def require_any_permission(
        self,
        team_id: str,
        actor_id: str,
        permissions: Sequence[str],
    ) -> AccessContext:
        """
        Allow if at least one of `permissions` is granted. The context carries
        the granted subset, in input order. An empty request grants nothing
        and is denied like any other.
        """
        required = list(permissions)
        for p in required:
            self.catalog.validate(p)

        role = await self._actor_role(team_id, actor_id)

        granted: list[str] = []
        for p in required:
            if p in granted:
                continue
            if await permission_store.has_permission(self.db, team_id, role, p, catalog=self.catalog):
                granted.append(p)

        if not granted:
            logger.debug("deny: %s (%s) has none of %s in team %s", actor_id, role.value, required, team_id)
            raise InsufficientPermission(
                f"Insufficient permissions. Required one of: {', '.join(required) or '(none)'}",
                required=required,
                role=role.value,
            )

        return AccessContext(team_id=team_id, user_id=actor_id, role=role, permissions=tuple(granted))

    async def require_role(
        self,
        team_id: str,
        actor_id: str,
        minimum_role: TeamRole | str,
    ) -> AccessContext:
        """At least `minimum_role` authority: equal rank passes."""
        minimum = parse_role(minimum_role)
        role = await self._actor_role(team_id, actor_id)

        if rank(role) > rank(minimum):
            logger.debug("deny: %s is %s, needs %s in team %s", actor_id, role.value, minimum.value, team_id)
            raise InsufficientRole(
                f"Insufficient role. Required: {minimum.value} or higher",
                required_role=minimum.value,
                role=role.value,
            )

        return AccessContext(team_id=team_id, user_id=actor_id, role=role)

    async def require_owner(self, team_id: str, actor_id: str) -> AccessContext:
        return await self.require_role(team_id, actor_id, TeamRole.OWNER)

    async def require_role_management(
        self,
        team_id: str,
        actor_id: str,
        target_id: str,
    ) -> AccessContext:
        actor_role = await self._actor_role(team_id, actor_id)

        target_role = await membership_store.get_user_role(self.db, team_id, target_id)
        if target_role is None:
            raise TargetNotMember(team_id=team_id, user_id=target_id)

        # checked before the hierarchy so it holds for every role, owner included
        if actor_id == target_id:
            raise SelfManagement(team_id=team_id, user_id=actor_id)

        if not permission_store.can_manage_role(actor_role, target_role):
            logger.debug(
                "deny: %s (%s) cannot manage %s (%s) in team %s",
                actor_id,
                actor_role.value,
                target_id,
                target_role.value,
                team_id,
            )
            raise InsufficientAuthority(role=actor_role.value, target_role=target_role.value)

        return AccessContext(
            team_id=team_id,
            user_id=actor_id,
            role=actor_role,
            target_user_id=target_id,
            target_role=target_role,
        )

    async def require_role_assignment(
        self,
        team_id: str,
        actor_id: str,
        target_id: str,
        new_role: TeamRole | str,
    ) -> AccessContext:
        """
        Role management plus: the role being handed out must also sit strictly
        below the actor's own.
        """
        new_role = parse_role(new_role)
        ctx = await self.require_role_management(team_id, actor_id, target_id)
        if not permission_store.can_manage_role(ctx.role, new_role):
            raise InsufficientAuthority(
                f"You cannot assign the {new_role.value} role.",
                role=ctx.role.value,
                requested_role=new_role.value,
            )
        return ctx

    async def load_permissions(self, team_id: str, actor_id: str) -> Optional[AccessContext]:
        """Resolved role and every granted permission, or None for non-members."""
        role = await membership_store.get_user_role(self.db, team_id, actor_id)
        if role is None:
            return None
        granted = await permission_store.granted_permissions(self.db, team_id, role, catalog=self.catalog)
        return AccessContext(team_id=team_id, user_id=actor_id, role=role, permissions=tuple(granted))

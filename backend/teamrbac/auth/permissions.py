from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Mapping, Sequence

from teamrbac.core.errors import UnknownPermission
from teamrbac.core.roles import ROLE_HIERARCHY, TeamRole, parse_role


@dataclass(frozen=True)
class Permission:
    # team.*
    TEAM_MANAGE: str = "team.manage"
    TEAM_DELETE: str = "team.delete"
    TEAM_INVITE: str = "team.invite"
    TEAM_SETTINGS_UPDATE: str = "team.settings.update"

    # team.members.* / team.roles.*
    MEMBERS_VIEW: str = "team.members.view"
    MEMBERS_MANAGE: str = "team.members.manage"
    MEMBERS_REMOVE: str = "team.members.remove"
    ROLES_MANAGE: str = "team.roles.manage"

    # team.chat.*
    CHAT: str = "team.chat"
    CHAT_MODERATE: str = "team.chat.moderate"

    # team.tournament.*
    TOURNAMENT_CREATE: str = "team.tournament.create"
    TOURNAMENT_JOIN: str = "team.tournament.join"
    TOURNAMENT_MANAGE: str = "team.tournament.manage"

    # team.analytics.* / leaderboard / achievements
    ANALYTICS_VIEW: str = "team.analytics.view"
    ANALYTICS_EXPORT: str = "team.analytics.export"
    LEADERBOARD_VIEW: str = "team.leaderboard.view"
    ACHIEVEMENTS_MANAGE: str = "team.achievements.manage"

    # team.finances.*
    FINANCES_VIEW: str = "team.finances.view"
    FINANCES_MANAGE: str = "team.finances.manage"


PERM = Permission()


@dataclass(frozen=True)
class PermissionDefinition:
    id: str
    description: str
    default_roles: FrozenSet[TeamRole]


class PermissionCatalog:
    """
    Closed, read-only set of permission ids with their default grant-by-role.

    Built once at startup; construction fails on duplicate ids or on default
    roles outside the hierarchy, so a bad catalog never reaches storage.
    """

    def __init__(self, definitions: Iterable[PermissionDefinition]) -> None:
        ordered: list[PermissionDefinition] = []
        by_id: dict[str, PermissionDefinition] = {}
        for d in definitions:
            if not d.id or d.id != d.id.strip():
                raise ValueError(f"Invalid permission id: {d.id!r}")
            if d.id in by_id:
                raise ValueError(f"Duplicate permission id in catalog: {d.id!r}")
            roles = frozenset(parse_role(r) for r in d.default_roles)
            d = PermissionDefinition(id=d.id, description=d.description, default_roles=roles)
            by_id[d.id] = d
            ordered.append(d)

        self._ordered: tuple[PermissionDefinition, ...] = tuple(ordered)
        self._by_id: Mapping[str, PermissionDefinition] = by_id

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, permission: object) -> bool:
        return isinstance(permission, str) and permission in self._by_id

    def list_permissions(self) -> Sequence[PermissionDefinition]:
        return self._ordered

    def ids(self) -> list[str]:
        return [d.id for d in self._ordered]

    def is_valid_permission(self, permission: str) -> bool:
        return permission in self

    def validate(self, permission: str) -> str:
        if permission not in self:
            raise UnknownPermission(permission)
        return permission

    def get(self, permission: str) -> PermissionDefinition:
        return self._by_id[self.validate(permission)]

    def default_grant(self, role: TeamRole | str, permission: str) -> bool:
        return parse_role(role) in self.get(permission).default_roles

    def default_grants(self) -> list[tuple[TeamRole, str, bool]]:
        """Every (role, permission, granted) pair; role order, then catalog order."""
        return [
            (role, d.id, role in d.default_roles)
            for role in ROLE_HIERARCHY
            for d in self._ordered
        ]


_ALL = frozenset(ROLE_HIERARCHY)
_OWNER = frozenset({TeamRole.OWNER})
_ADMINS = frozenset({TeamRole.OWNER, TeamRole.ADMIN})
_MODERATORS = frozenset({TeamRole.OWNER, TeamRole.ADMIN, TeamRole.MODERATOR})


DEFAULT_CATALOG = PermissionCatalog(
    [
        PermissionDefinition(PERM.TEAM_MANAGE, "Manage team settings and permission grants", _ADMINS),
        PermissionDefinition(PERM.TEAM_DELETE, "Delete the team", _OWNER),
        PermissionDefinition(PERM.TEAM_INVITE, "Invite members", _ADMINS),
        PermissionDefinition(PERM.MEMBERS_REMOVE, "Remove members", _MODERATORS),
        PermissionDefinition(PERM.ROLES_MANAGE, "Promote or demote members", _ADMINS),
        PermissionDefinition(PERM.CHAT, "Send team chat messages", _ALL),
        PermissionDefinition(PERM.CHAT_MODERATE, "Moderate team chat", _MODERATORS),
        PermissionDefinition(PERM.TOURNAMENT_CREATE, "Create tournaments", _ADMINS),
        PermissionDefinition(PERM.TOURNAMENT_JOIN, "Join tournaments", _ALL),
        PermissionDefinition(PERM.TOURNAMENT_MANAGE, "Manage team tournaments", _ADMINS),
        PermissionDefinition(PERM.ANALYTICS_VIEW, "View team analytics", _ALL),
        PermissionDefinition(PERM.ANALYTICS_EXPORT, "Export team data", _ADMINS),
        PermissionDefinition(PERM.LEADERBOARD_VIEW, "View team leaderboards", _ALL),
        PermissionDefinition(PERM.ACHIEVEMENTS_MANAGE, "Manage team achievements", _ADMINS),
        PermissionDefinition(PERM.TEAM_SETTINGS_UPDATE, "Update team settings", _ADMINS),
        PermissionDefinition(PERM.MEMBERS_VIEW, "View team members", _ALL),
        PermissionDefinition(PERM.MEMBERS_MANAGE, "Manage team members", _ADMINS),
        PermissionDefinition(PERM.FINANCES_VIEW, "View team finances", _ADMINS),
        PermissionDefinition(PERM.FINANCES_MANAGE, "Manage team finances", _OWNER),
    ]
)

# teamrbac/core/roles.py

from __future__ import annotations

import enum
from typing import Mapping

from teamrbac.core.errors import UnknownRole


class TeamRole(str, enum.Enum):
    OWNER = "owner"          # exactly one per team
    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"


class RoleComparison(str, enum.Enum):
    HIGHER = "higher"
    EQUAL = "equal"
    LOWER = "lower"


# Lower rank = more authority. Ranks are explicit so that adding a role later
# never silently reorders the existing ones.
ROLE_RANKS: Mapping[TeamRole, int] = {
    TeamRole.OWNER: 0,
    TeamRole.ADMIN: 10,
    TeamRole.MODERATOR: 20,
    TeamRole.MEMBER: 30,
}

ROLE_HIERARCHY: tuple[TeamRole, ...] = tuple(sorted(ROLE_RANKS, key=ROLE_RANKS.__getitem__))


def parse_role(value: TeamRole | str | None) -> TeamRole:
    """
    Normalize a role identifier ("Admin", " admin ", TeamRole.ADMIN).
    Anything outside the hierarchy raises UnknownRole.
    """
    if isinstance(value, TeamRole):
        return value
    normalized = (value or "").strip().lower()
    try:
        return TeamRole(normalized)
    except ValueError:
        raise UnknownRole(value) from None


def rank(role: TeamRole | str) -> int:
    return ROLE_RANKS[parse_role(role)]


def compare(a: TeamRole | str, b: TeamRole | str) -> RoleComparison:
    """Authority of `a` relative to `b`."""
    ra, rb = rank(a), rank(b)
    if ra < rb:
        return RoleComparison.HIGHER
    if ra > rb:
        return RoleComparison.LOWER
    return RoleComparison.EQUAL


def is_at_least(role: TeamRole | str, minimum: TeamRole | str) -> bool:
    return rank(role) <= rank(minimum)

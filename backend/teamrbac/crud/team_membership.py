# teamrbac/crud/team_membership.py
from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from teamrbac.core.config import settings
from teamrbac.core.errors import (
    AlreadyMember,
    LastOwner,
    NotMember,
    NotOwner,
    OwnershipTransferRequired,
)
from teamrbac.core.roles import TeamRole, parse_role
from teamrbac.db.errors import store_transaction, translate_store_errors
from teamrbac.models.team_membership import TeamMembership

logger = logging.getLogger(__name__)

OWNER = TeamRole.OWNER.value


# ---------------------------------------------------------
# Reads
# ---------------------------------------------------------
async def get_membership(db: AsyncSession, team_id: str, user_id: str) -> Optional[TeamMembership]:
    stmt = select(TeamMembership).where(
        TeamMembership.team_id == team_id,
        TeamMembership.user_id == user_id,
    )
    with translate_store_errors("get_membership"):
        return (await db.execute(stmt)).scalar_one_or_none()


async def get_user_role(db: AsyncSession, team_id: str, user_id: str) -> Optional[TeamRole]:
    """
    None means "not a member". It is never folded into the lowest role.
    """
    stmt = select(TeamMembership.role).where(
        TeamMembership.team_id == team_id,
        TeamMembership.user_id == user_id,
    )
    with translate_store_errors("get_user_role"):
        role = (await db.execute(stmt)).scalar_one_or_none()
    return parse_role(role) if role is not None else None


async def list_members(db: AsyncSession, team_id: str) -> list[TeamMembership]:
    stmt = (
        select(TeamMembership)
        .where(TeamMembership.team_id == team_id)
        .order_by(TeamMembership.joined_at.asc(), TeamMembership.user_id.asc())
    )
    with translate_store_errors("list_members"):
        res = await db.execute(stmt)
    return list(res.scalars().all())


async def list_user_teams(db: AsyncSession, user_id: str) -> list[TeamMembership]:
    """Every membership the user holds, oldest first."""
    stmt = (
        select(TeamMembership)
        .where(TeamMembership.user_id == user_id)
        .order_by(TeamMembership.joined_at.asc(), TeamMembership.team_id.asc())
    )
    with translate_store_errors("list_user_teams"):
        res = await db.execute(stmt)
    return list(res.scalars().all())


async def get_owner(db: AsyncSession, team_id: str) -> Optional[str]:
    stmt = select(TeamMembership.user_id).where(
        TeamMembership.team_id == team_id,
        TeamMembership.role == OWNER,
    )
    with translate_store_errors("get_owner"):
        return (await db.execute(stmt)).scalar_one_or_none()


async def count_owners(db: AsyncSession, team_id: str) -> int:
    stmt = select(func.count(TeamMembership.id)).where(
        TeamMembership.team_id == team_id,
        TeamMembership.role == OWNER,
    )
    with translate_store_errors("count_owners"):
        res = await db.execute(stmt)
    return int(res.scalar() or 0)


# ---------------------------------------------------------
# Writes
# ---------------------------------------------------------
async def found_team(db: AsyncSession, team_id: str, owner_id: str) -> TeamMembership:
    """
    Create the founding owner membership of a new team.
    Fails with AlreadyMember if the team already has an owner.
    """
    membership = TeamMembership(
        id=str(uuid.uuid4()),
        team_id=team_id,
        user_id=owner_id,
        role=OWNER,
    )
    try:
        async with store_transaction(db, "found_team"):
            db.add(membership)
            await db.flush()
    except IntegrityError:
        # either (team, user) exists or the one-owner index rejected it
        raise AlreadyMember(
            "Team already has an owner or this user is already a member.",
            team_id=team_id,
            user_id=owner_id,
        ) from None

    with translate_store_errors("found_team"):
        await db.refresh(membership)

    logger.info("team %s founded with owner %s", team_id, owner_id)
    return membership


async def add_member(
    db: AsyncSession,
    team_id: str,
    user_id: str,
    role: TeamRole | str = TeamRole.MEMBER,
) -> TeamMembership:
    """Join / invitation acceptance. Never creates an owner."""
    role = parse_role(role)
    if role is TeamRole.OWNER:
        raise OwnershipTransferRequired(team_id=team_id, user_id=user_id)

    membership = TeamMembership(
        id=str(uuid.uuid4()),
        team_id=team_id,
        user_id=user_id,
        role=role.value,
    )
    try:
        async with store_transaction(db, "add_member"):
            db.add(membership)
            await db.flush()
    except IntegrityError:
        raise AlreadyMember(team_id=team_id, user_id=user_id) from None

    with translate_store_errors("add_member"):
        await db.refresh(membership)

    logger.info("team %s: %s joined as %s", team_id, user_id, role.value)
    return membership


async def set_user_role(
    db: AsyncSession,
    team_id: str,
    user_id: str,
    role: TeamRole | str,
) -> TeamRole:
    """
    Change a member's role. Hierarchy policy is enforced by the caller.

    The owner role is outside this operation in both directions: the owner
    can't be demoted here and nobody can be promoted to owner here.
    """
    role = parse_role(role)
    if role is TeamRole.OWNER:
        raise OwnershipTransferRequired(team_id=team_id, user_id=user_id)

    # guarded on role so a concurrent transfer can't be overwritten
    stmt = (
        update(TeamMembership)
        .where(
            TeamMembership.team_id == team_id,
            TeamMembership.user_id == user_id,
            TeamMembership.role != OWNER,
        )
        .values(role=role.value)
    )
    async with store_transaction(db, "set_user_role"):
        res = await db.execute(stmt)
        if res.rowcount == 0:
            current = await get_user_role(db, team_id, user_id)
            if current is None:
                raise NotMember(team_id=team_id, user_id=user_id)
            raise OwnershipTransferRequired(team_id=team_id, user_id=user_id)

    logger.info("team %s: %s is now %s", team_id, user_id, role.value)
    return role


async def transfer_ownership(
    db: AsyncSession,
    team_id: str,
    from_user_id: str,
    to_user_id: str,
    *,
    successor_role: TeamRole | str | None = None,
) -> None:
    """
    Atomically hand the owner role from `from_user_id` to `to_user_id`.

    The demotion is a compare-and-swap on role = 'owner': of two concurrent
    transfers from the same owner only the first to commit matches a row, the
    other gets NotOwner. Demote runs before promote so the one-owner index
    never sees two owners.
    """
    successor = parse_role(successor_role or settings.OWNER_SUCCESSOR_ROLE)
    if successor is TeamRole.OWNER:
        raise ValueError("successor_role cannot be owner")

    demote = (
        update(TeamMembership)
        .where(
            TeamMembership.team_id == team_id,
            TeamMembership.user_id == from_user_id,
            TeamMembership.role == OWNER,
        )
        .values(role=successor.value)
    )
    promote = (
        update(TeamMembership)
        .where(
            TeamMembership.team_id == team_id,
            TeamMembership.user_id == to_user_id,
        )
        .values(role=OWNER)
    )

    async with store_transaction(db, "transfer_ownership"):
        res = await db.execute(demote)
        if res.rowcount != 1:
            raise NotOwner(team_id=team_id, user_id=from_user_id)

        res = await db.execute(promote)
        if res.rowcount != 1:
            raise NotMember(team_id=team_id, user_id=to_user_id)

    logger.info(
        "team %s: ownership transferred from %s (now %s) to %s",
        team_id,
        from_user_id,
        successor.value,
        to_user_id,
    )


async def remove_membership(db: AsyncSession, team_id: str, user_id: str) -> None:
    """Leave / kick. The owner can't be removed without a prior transfer."""
    stmt = delete(TeamMembership).where(
        TeamMembership.team_id == team_id,
        TeamMembership.user_id == user_id,
        TeamMembership.role != OWNER,
    )
    async with store_transaction(db, "remove_membership"):
        res = await db.execute(stmt)
        if res.rowcount == 0:
            current = await get_user_role(db, team_id, user_id)
            if current is None:
                raise NotMember(team_id=team_id, user_id=user_id)
            raise LastOwner(team_id=team_id, user_id=user_id)

    logger.info("team %s: %s removed", team_id, user_id)

# teamrbac/crud/team_permission.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from teamrbac.auth.permissions import DEFAULT_CATALOG, PermissionCatalog
from teamrbac.core.roles import ROLE_HIERARCHY, TeamRole, parse_role, rank
from teamrbac.db.errors import store_transaction, translate_store_errors
from teamrbac.models.team_permission import TeamPermission

logger = logging.getLogger(__name__)

_CONFLICT_KEYS = ["team_id", "role", "permission"]


@dataclass(frozen=True)
class PermissionGrant:
    permission: str
    granted: bool
    is_override: bool
    expires_at: Optional[datetime] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _is_live(row: TeamPermission, now: datetime) -> bool:
    return row.expires_at is None or _as_aware(row.expires_at) > now


_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def _insert_for(db: AsyncSession):
    # engines are only built for SUPPORTED_DIALECTS
    return _INSERTS[db.get_bind().dialect.name](TeamPermission.__table__)


def can_manage_role(manager_role: TeamRole | str, target_role: TeamRole | str) -> bool:
    """
    A role can only manage roles strictly below it. Equal rank is never
    manageable, so a role can't act on peers or on itself.
    """
    return rank(manager_role) < rank(target_role)


# ---------------------------------------------------------
# Reads
# ---------------------------------------------------------
async def _live_overrides(
    db: AsyncSession,
    team_id: str,
    role: Optional[TeamRole] = None,
) -> dict[tuple[str, str], TeamPermission]:
    stmt = select(TeamPermission).where(TeamPermission.team_id == team_id)
    if role is not None:
        stmt = stmt.where(TeamPermission.role == role.value)

    with translate_store_errors("load_overrides"):
        rows = (await db.execute(stmt)).scalars().all()

    now = utcnow()
    return {(r.role, r.permission): r for r in rows if _is_live(r, now)}


async def has_permission(
    db: AsyncSession,
    team_id: str,
    role: TeamRole | str,
    permission: str,
    *,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> bool:
    """Live override if one exists, else the catalog default for the role."""
    role = parse_role(role)
    catalog.validate(permission)

    stmt = select(TeamPermission).where(
        TeamPermission.team_id == team_id,
        TeamPermission.role == role.value,
        TeamPermission.permission == permission,
    )
    with translate_store_errors("has_permission"):
        row = (await db.execute(stmt)).scalar_one_or_none()

    if row is not None and _is_live(row, utcnow()):
        return row.granted
    return catalog.default_grant(role, permission)


def _resolve(
    catalog: PermissionCatalog,
    role: TeamRole,
    overrides: Mapping[tuple[str, str], TeamPermission],
) -> list[PermissionGrant]:
    grants: list[PermissionGrant] = []
    for d in catalog.list_permissions():
        row = overrides.get((role.value, d.id))
        if row is not None:
            grants.append(PermissionGrant(d.id, row.granted, True, row.expires_at))
        else:
            grants.append(PermissionGrant(d.id, role in d.default_roles, False))
    return grants


async def get_permissions_for_role(
    db: AsyncSession,
    team_id: str,
    role: TeamRole | str,
    *,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> list[PermissionGrant]:
    """
    Catalog entries merged with the team's overrides, in catalog order.
    Override rows for ids no longer in the catalog are ignored.
    """
    role = parse_role(role)
    overrides = await _live_overrides(db, team_id, role)
    return _resolve(catalog, role, overrides)


async def get_team_permissions(
    db: AsyncSession,
    team_id: str,
    *,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> dict[TeamRole, list[PermissionGrant]]:
    overrides = await _live_overrides(db, team_id)
    return {role: _resolve(catalog, role, overrides) for role in ROLE_HIERARCHY}


async def granted_permissions(
    db: AsyncSession,
    team_id: str,
    role: TeamRole | str,
    *,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> list[str]:
    grants = await get_permissions_for_role(db, team_id, role, catalog=catalog)
    return [g.permission for g in grants if g.granted]


# ---------------------------------------------------------
# Writes
# ---------------------------------------------------------
def _validate_expiry(expires_at: Optional[datetime]) -> Optional[datetime]:
    if expires_at is None:
        return None
    # SQLite drops tzinfo on write, so only UTC wall-clock may reach storage
    expires_at = _as_aware(expires_at).astimezone(timezone.utc)
    if expires_at <= utcnow():
        raise ValueError("expires_at must be in the future")
    return expires_at


GrantSpec = Union[tuple[str, bool], tuple[str, bool, Optional[datetime]]]


async def set_role_permissions(
    db: AsyncSession,
    team_id: str,
    role: TeamRole | str,
    grants: Mapping[str, bool] | Iterable[GrantSpec],
    *,
    granted_by: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> list[PermissionGrant]:
    """
    Upsert several overrides for one role in a single transaction.
    Every id and expiry is validated before anything is written.

    `grants` items are (permission, granted) or (permission, granted,
    expires_at); `expires_at` applies to items that carry none of their own.

    Policy (team.manage, hierarchy) is the caller's job.
    """
    role = parse_role(role)
    items = list(grants.items()) if isinstance(grants, Mapping) else list(grants)

    specs: list[tuple[str, bool, Optional[datetime]]] = []
    for item in items:
        permission, granted = item[0], item[1]
        own_expiry = item[2] if len(item) > 2 else None
        catalog.validate(permission)
        specs.append((permission, bool(granted), _validate_expiry(own_expiry or expires_at)))

    if not specs:
        return []

    # last write wins for duplicate ids in one request
    values = {
        permission: {
            "id": str(uuid.uuid4()),
            "team_id": team_id,
            "role": role.value,
            "permission": permission,
            "granted": granted,
            "granted_by": granted_by,
            "expires_at": expiry,
        }
        for permission, granted, expiry in specs
    }

    insert = _insert_for(db)
    stmt = insert.values(list(values.values()))
    stmt = stmt.on_conflict_do_update(
        index_elements=_CONFLICT_KEYS,
        set_={
            "granted": stmt.excluded.granted,
            "granted_by": stmt.excluded.granted_by,
            "expires_at": stmt.excluded.expires_at,
            "granted_at": func.now(),
        },
    )

    async with store_transaction(db, "set_role_permissions"):
        await db.execute(stmt)

    logger.info(
        "team %s: %s override(s) written for role %s by %s",
        team_id,
        len(values),
        role.value,
        granted_by or "system",
    )
    return [
        PermissionGrant(v["permission"], v["granted"], True, v["expires_at"])
        for v in values.values()
    ]


async def set_permission(
    db: AsyncSession,
    team_id: str,
    role: TeamRole | str,
    permission: str,
    granted: bool,
    *,
    granted_by: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> PermissionGrant:
    written = await set_role_permissions(
        db,
        team_id,
        role,
        [(permission, granted)],
        granted_by=granted_by,
        expires_at=expires_at,
        catalog=catalog,
    )
    return written[0]


async def reset_permission(
    db: AsyncSession,
    team_id: str,
    role: TeamRole | str,
    permission: str,
    *,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> bool:
    """Drop an override so the catalog default applies again."""
    role = parse_role(role)
    catalog.validate(permission)

    stmt = delete(TeamPermission).where(
        TeamPermission.team_id == team_id,
        TeamPermission.role == role.value,
        TeamPermission.permission == permission,
    )
    async with store_transaction(db, "reset_permission"):
        res = await db.execute(stmt)

    removed = (res.rowcount or 0) > 0
    if removed:
        logger.info("team %s: override %s for role %s reset to default", team_id, permission, role.value)
    return removed


async def initialize_defaults(
    db: AsyncSession,
    team_id: str,
    *,
    granted_by: Optional[str] = None,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> int:
    """
    Write the catalog default for every (role, permission) pair that has no
    row yet. Existing rows, overrides included, are left alone, so repeated
    or concurrent runs converge on the same table.

    Returns the number of rows inserted.
    """
    values = [
        {
            "id": str(uuid.uuid4()),
            "team_id": team_id,
            "role": role.value,
            "permission": permission,
            "granted": granted,
            "granted_by": granted_by,
            "expires_at": None,
        }
        for role, permission, granted in catalog.default_grants()
    ]
    if not values:
        return 0

    insert = _insert_for(db)
    stmt = insert.values(values).on_conflict_do_nothing(index_elements=_CONFLICT_KEYS)

    async with store_transaction(db, "initialize_defaults"):
        res = await db.execute(stmt)

    inserted = max(res.rowcount or 0, 0)
    logger.info("team %s: initialized %s default permission row(s)", team_id, inserted)
    return inserted

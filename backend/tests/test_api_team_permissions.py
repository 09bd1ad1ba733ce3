from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from teamrbac.api.deps.team import require_any_team_permission, require_team_role
from teamrbac.auth.permissions import DEFAULT_CATALOG, PERM
from teamrbac.core.errors import TeamAccessError
from teamrbac.crud import team_permission as permission_store
from teamrbac.db.session import get_db
from teamrbac.main import team_access_error_handler

pytestmark = pytest.mark.asyncio


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


async def test_available_permissions_is_public(client):
    resp = await client.get("/api/v1/permissions/available")
    assert resp.status_code == 200
    data = resp.json()
    assert [p["id"] for p in data["permissions"]] == DEFAULT_CATALOG.ids()
    assert data["roles"] == ["owner", "admin", "moderator", "member"]
    assert [r["rank"] for r in data["role_hierarchy"]] == [0, 10, 20, 30]


async def test_missing_actor_header_is_401(client, team):
    resp = await client.get(f"/api/v1/teams/{team}/permissions")
    assert resp.status_code == 401


async def test_non_member_gets_403(client, team):
    resp = await client.get(f"/api/v1/teams/{team}/permissions", headers=as_user("mallory"))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "not_a_team_member"


async def test_team_permissions_lists_every_role(client, team):
    resp = await client.get(f"/api/v1/teams/{team}/permissions", headers=as_user("carol"))
    assert resp.status_code == 200
    roles = resp.json()["roles"]
    assert set(roles) == {"owner", "admin", "moderator", "member"}
    assert all(len(grants) == len(DEFAULT_CATALOG) for grants in roles.values())


async def test_role_permissions_reflect_overrides(client, db, team):
    await permission_store.set_permission(db, team, "member", PERM.CHAT, False)

    resp = await client.get(f"/api/v1/teams/{team}/roles/member/permissions", headers=as_user("carol"))
    assert resp.status_code == 200
    chat = next(p for p in resp.json()["permissions"] if p["permission"] == PERM.CHAT)
    assert chat == {"permission": PERM.CHAT, "granted": False, "is_override": True, "expires_at": None}


async def test_unknown_role_in_path_is_422(client, team):
    resp = await client.get(f"/api/v1/teams/{team}/roles/guest/permissions", headers=as_user("alice"))
    assert resp.status_code == 422


async def test_admin_updates_member_permissions(client, db, team):
    resp = await client.put(
        f"/api/v1/teams/{team}/roles/member/permissions",
        headers=as_user("bob"),
        json={"permissions": [{"permission": PERM.TEAM_INVITE, "granted": True}]},
    )
    assert resp.status_code == 200
    invite = next(p for p in resp.json()["permissions"] if p["permission"] == PERM.TEAM_INVITE)
    assert invite["granted"] is True
    assert invite["is_override"] is True

    assert await permission_store.has_permission(db, team, "member", PERM.TEAM_INVITE) is True


async def test_admin_cannot_edit_own_or_higher_role(client, team):
    for role in ("admin", "owner"):
        resp = await client.put(
            f"/api/v1/teams/{team}/roles/{role}/permissions",
            headers=as_user("bob"),
            json={"permissions": [{"permission": PERM.CHAT, "granted": False}]},
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "insufficient_authority"


async def test_member_cannot_edit_permissions(client, team):
    resp = await client.put(
        f"/api/v1/teams/{team}/roles/member/permissions",
        headers=as_user("carol"),
        json={"permissions": [{"permission": PERM.CHAT, "granted": False}]},
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "insufficient_permission"


async def test_unknown_permission_in_body_is_400_and_writes_nothing(client, db, team):
    resp = await client.put(
        f"/api/v1/teams/{team}/roles/member/permissions",
        headers=as_user("alice"),
        json={
            "permissions": [
                {"permission": PERM.CHAT, "granted": False},
                {"permission": "team.fly", "granted": True},
            ]
        },
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["unknown"] == ["team.fly"]
    assert await permission_store.has_permission(db, team, "member", PERM.CHAT) is True


async def test_past_expiry_is_rejected(client, team):
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    resp = await client.put(
        f"/api/v1/teams/{team}/roles/member/permissions",
        headers=as_user("alice"),
        json={"permissions": [{"permission": PERM.CHAT, "granted": False}], "expires_at": past},
    )
    assert resp.status_code == 422


async def test_reset_override(client, db, team):
    await permission_store.set_permission(db, team, "member", PERM.CHAT, False)

    resp = await client.delete(
        f"/api/v1/teams/{team}/roles/member/permissions/{PERM.CHAT}", headers=as_user("bob")
    )
    assert resp.status_code == 204
    assert await permission_store.has_permission(db, team, "member", PERM.CHAT) is True

    resp = await client.delete(
        f"/api/v1/teams/{team}/roles/member/permissions/{PERM.CHAT}", headers=as_user("bob")
    )
    assert resp.status_code == 404


async def test_initialize_defaults_is_owner_only_and_idempotent(client, team):
    resp = await client.post(f"/api/v1/teams/{team}/permissions/initialize", headers=as_user("bob"))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "insufficient_role"

    resp = await client.post(f"/api/v1/teams/{team}/permissions/initialize", headers=as_user("alice"))
    assert resp.status_code == 200
    assert resp.json() == {"team_id": team, "inserted": 4 * len(DEFAULT_CATALOG)}

    resp = await client.post(f"/api/v1/teams/{team}/permissions/initialize", headers=as_user("alice"))
    assert resp.json()["inserted"] == 0


async def test_my_permissions(client, team):
    resp = await client.get(f"/api/v1/teams/{team}/me/permissions", headers=as_user("carol"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["role"] == "member"
    assert PERM.CHAT in data["permissions"]
    assert PERM.TEAM_MANAGE not in data["permissions"]
    assert data["count"] == len(data["permissions"])

    resp = await client.get(f"/api/v1/teams/{team}/me/permissions", headers=as_user("mallory"))
    assert resp.status_code == 403


async def test_user_permissions(client, team):
    resp = await client.get(f"/api/v1/teams/{team}/users/bob/permissions", headers=as_user("carol"))
    assert resp.status_code == 200
    assert resp.json()["role"] == "admin"

    resp = await client.get(f"/api/v1/teams/{team}/users/mallory/permissions", headers=as_user("carol"))
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "target_not_member"


async def test_any_permission_and_role_guards(sessionmaker, team):
    guarded = FastAPI()
    guarded.add_exception_handler(TeamAccessError, team_access_error_handler)

    @guarded.get("/teams/{team_id}/analytics")
    async def analytics(ctx=Depends(require_any_team_permission(PERM.ANALYTICS_EXPORT, PERM.ANALYTICS_VIEW))):
        return {"role": ctx.role.value, "permissions": list(ctx.permissions)}

    @guarded.get("/teams/{team_id}/moderation")
    async def moderation(ctx=Depends(require_team_role("moderator"))):
        return {"role": ctx.role.value}

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    guarded.dependency_overrides[get_db] = _override_get_db

    async with AsyncClient(transport=ASGITransport(app=guarded), base_url="http://test") as ac:
        resp = await ac.get(f"/teams/{team}/analytics", headers=as_user("carol"))
        assert resp.status_code == 200
        assert resp.json() == {"role": "member", "permissions": [PERM.ANALYTICS_VIEW]}

        resp = await ac.get(f"/teams/{team}/moderation", headers=as_user("bob"))
        assert resp.status_code == 200

        resp = await ac.get(f"/teams/{team}/moderation", headers=as_user("carol"))
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "insufficient_role"



async def test_check_role_permission(client, db, team):
    resp = await client.get(f"/api/v1/teams/{team}/check/admin/{PERM.TEAM_INVITE}", headers=as_user("carol"))
    assert resp.status_code == 200
    assert resp.json() == {"team_id": team, "role": "admin", "permission": PERM.TEAM_INVITE, "granted": True}

    await permission_store.set_permission(db, team, "admin", PERM.TEAM_INVITE, False)
    resp = await client.get(f"/api/v1/teams/{team}/check/admin/{PERM.TEAM_INVITE}", headers=as_user("carol"))
    assert resp.json()["granted"] is False


async def test_check_role_permission_rejects_bad_input(client, team):
    resp = await client.get(f"/api/v1/teams/{team}/check/admin/team.fly", headers=as_user("carol"))
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "unknown_permission"

    resp = await client.get(f"/api/v1/teams/{team}/check/guest/{PERM.CHAT}", headers=as_user("carol"))
    assert resp.status_code == 422

    resp = await client.get(f"/api/v1/teams/{team}/check/admin/{PERM.CHAT}", headers=as_user("mallory"))
    assert resp.status_code == 403


async def test_update_with_per_permission_expiry(client, team):
    soon = datetime.now(timezone.utc) + timedelta(minutes=30)
    later = datetime.now(timezone.utc) + timedelta(days=2)
    resp = await client.put(
        f"/api/v1/teams/{team}/roles/member/permissions",
        headers=as_user("alice"),
        json={
            "permissions": [
                {"permission": PERM.TEAM_INVITE, "granted": True, "expires_at": soon.isoformat()},
                {"permission": PERM.CHAT, "granted": False},
            ],
            "expires_at": later.isoformat(),
        },
    )
    assert resp.status_code == 200
    grants = {p["permission"]: p for p in resp.json()["permissions"]}

    def parsed(value: str) -> datetime:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)

    assert abs(parsed(grants[PERM.TEAM_INVITE]["expires_at"]) - soon) < timedelta(seconds=1)
    assert abs(parsed(grants[PERM.CHAT]["expires_at"]) - later) < timedelta(seconds=1)


async def test_offset_expiry_keeps_override_live(client, db, team):
    eastern = timezone(timedelta(hours=-5))
    expires_at = (datetime.now(eastern) + timedelta(hours=1)).isoformat()
    resp = await client.put(
        f"/api/v1/teams/{team}/roles/member/permissions",
        headers=as_user("alice"),
        json={"permissions": [{"permission": PERM.TEAM_MANAGE, "granted": True, "expires_at": expires_at}]},
    )
    assert resp.status_code == 200
    assert await permission_store.has_permission(db, team, "member", PERM.TEAM_MANAGE) is True


async def test_past_per_permission_expiry_is_rejected(client, team):
    past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
    resp = await client.put(
        f"/api/v1/teams/{team}/roles/member/permissions",
        headers=as_user("alice"),
        json={"permissions": [{"permission": PERM.CHAT, "granted": False, "expires_at": past}]},
    )
    assert resp.status_code == 422


async def test_store_outage_is_503_with_retry_after(app, client, sessionmaker):
    async def _broken_get_db():
        async with sessionmaker() as session:
            async def _execute(*args, **kwargs):
                raise OperationalError("SELECT 1", {}, Exception("could not connect to server"))

            session.execute = _execute
            yield session

    app.dependency_overrides[get_db] = _broken_get_db

    resp = await client.get("/api/v1/teams/T1/me/permissions", headers=as_user("alice"))
    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "1"
    detail = resp.json()["detail"]
    assert detail["code"] == "store_unavailable"
    assert detail["operation"] == "get_user_role"

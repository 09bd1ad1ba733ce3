from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from teamrbac.crud import team_membership as membership_store
from teamrbac.db.session import build_engine, build_sessionmaker, get_db

# Ensure Base + models are registered before create_all
from teamrbac.db.base import Base  # noqa: F401
import teamrbac.models  # noqa: F401

TEAM_ID = "T1"


# ---------------------------------------------------------
# Engine + schema lifecycle
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(tmp_path):
    """
    One SQLite file per test. A file (not :memory:) so that separate
    sessions get separate connections and really run concurrently.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'teamrbac_test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return build_sessionmaker(engine)


# ---------------------------------------------------------
# DB session for setup / assertions
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def db(sessionmaker):
    async with sessionmaker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture()
async def team(db) -> str:
    """
    Team T1: alice is owner, bob is admin, carol is a plain member.
    """
    await membership_store.found_team(db, TEAM_ID, "alice")
    await membership_store.add_member(db, TEAM_ID, "bob", "admin")
    await membership_store.add_member(db, TEAM_ID, "carol", "member")
    return TEAM_ID


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker):
    from teamrbac.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------
# HTTP client
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac

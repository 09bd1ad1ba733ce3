from __future__ import annotations

import pytest

from teamrbac.core.config import Settings, database_dialect
from teamrbac.db.session import build_engine


@pytest.mark.parametrize(
    ("url", "dialect"),
    [
        ("postgresql+asyncpg://u:p@db/teams", "postgresql"),
        ("sqlite+aiosqlite:///./teamrbac.db", "sqlite"),
        ("mysql+aiomysql://u:p@db/teams", "mysql"),
    ],
)
def test_database_dialect(url, dialect):
    assert database_dialect(url) == dialect


def test_settings_reject_unsupported_dialect():
    with pytest.raises(ValueError, match="Unsupported database dialect"):
        Settings(DATABASE_URL_ASYNC="mysql+aiomysql://u:p@db/teams")


def test_engine_is_not_built_for_unsupported_dialect():
    with pytest.raises(ValueError, match="Unsupported database dialect"):
        build_engine("mysql+aiomysql://u:p@db/teams")


def test_settings_reject_sqlite_in_production():
    with pytest.raises(ValueError):
        Settings(ENVIRONMENT="production", DATABASE_URL_ASYNC="sqlite+aiosqlite:///./teamrbac.db")


def test_settings_normalize_successor_role():
    assert Settings(OWNER_SUCCESSOR_ROLE=" Moderator ").OWNER_SUCCESSOR_ROLE == "moderator"
    with pytest.raises(ValueError):
        Settings(OWNER_SUCCESSOR_ROLE="owner")

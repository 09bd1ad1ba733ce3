# backend/teamrbac/core/config.py

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from pydantic_settings import BaseSettings, SettingsConfigDict

_KNOWN_ROLES = {"owner", "admin", "moderator", "member"}
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}

# Backends with an ON CONFLICT upsert the permission store can use.
SUPPORTED_DIALECTS = ("postgresql", "sqlite")


def database_dialect(url: str) -> str:
    """'postgresql+asyncpg://...' -> 'postgresql'"""
    return url.split(":", 1)[0].split("+", 1)[0].strip().lower()


def check_supported_dialect(url: str) -> str:
    dialect = database_dialect(url)
    if dialect not in SUPPORTED_DIALECTS:
        raise ValueError(
            f"Unsupported database dialect {dialect!r}. Allowed: {list(SUPPORTED_DIALECTS)}"
        )
    return dialect


def _strip_asyncpg_unsupported_params(url: str) -> str:
    """
    asyncpg does NOT accept sslmode or channel_binding as connect kwargs.
    If these appear in the URL query, SQLAlchemy passes them through to
    asyncpg.connect() and the engine fails on first use.
    """
    if not url.startswith("postgresql+asyncpg"):
        return url

    parts = urlsplit(url)
    if not parts.query:
        return url

    params = parse_qsl(parts.query, keep_blank_values=True)
    filtered = [(k, v) for (k, v) in params if k not in {"sslmode", "channel_binding"}]
    new_query = urlencode(filtered, doseq=True)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, new_query, parts.fragment))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -----------------------------
    # Environment
    # -----------------------------
    # Use: development | staging | production
    ENVIRONMENT: str = "development"

    LOG_LEVEL: str = "INFO"

    # -----------------------------
    # DB
    # -----------------------------
    DATABASE_URL_ASYNC: str = "sqlite+aiosqlite:///./teamrbac.db"
    DATABASE_URL_SYNC: str = "sqlite:///./teamrbac.db"
    SQL_ECHO: bool = False

    # -----------------------------
    # RBAC
    # -----------------------------
    # Role the previous owner is demoted to on ownership transfer.
    OWNER_SUCCESSOR_ROLE: str = "admin"

    @property
    def DATABASE_URL_ASYNC_CLEAN(self) -> str:
        return _strip_asyncpg_unsupported_params(self.DATABASE_URL_ASYNC)

    def model_post_init(self, __context) -> None:  # pydantic v2 hook
        env = (self.ENVIRONMENT or "").strip().lower()

        check_supported_dialect(self.DATABASE_URL_ASYNC)

        # Never run staging/production on the throwaway local SQLite file.
        if env in {"staging", "production"} and self.DATABASE_URL_ASYNC.startswith("sqlite"):
            raise ValueError("DATABASE_URL_ASYNC must point at PostgreSQL in staging/production.")

        successor = (self.OWNER_SUCCESSOR_ROLE or "").strip().lower()
        if successor not in _KNOWN_ROLES - {"owner"}:
            raise ValueError(
                f"Unsupported OWNER_SUCCESSOR_ROLE={self.OWNER_SUCCESSOR_ROLE!r}. "
                f"Allowed: {sorted(_KNOWN_ROLES - {'owner'})}"
            )
        self.OWNER_SUCCESSOR_ROLE = successor

        level = (self.LOG_LEVEL or "").strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unsupported LOG_LEVEL={self.LOG_LEVEL!r}. Allowed: {sorted(_LOG_LEVELS)}")
        self.LOG_LEVEL = level


settings = Settings()

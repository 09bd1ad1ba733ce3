# backend/teamrbac/models/team_permission.py

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from teamrbac.db.base import Base


class TeamPermission(Base):
    """
    Explicit per-team override of a catalog default.
    No row for (team, role, permission) means "use the catalog default".
    """

    __tablename__ = "team_permissions"
    __table_args__ = (
        UniqueConstraint("team_id", "role", "permission", name="uq_team_permissions_team_role_permission"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    team_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    permission: Mapped[str] = mapped_column(String(64), nullable=False)

    granted: Mapped[bool] = mapped_column(Boolean, nullable=False)

    # Who wrote the row (None for defaults seeded by the system)
    granted_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Expired overrides are ignored and the catalog default applies again
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

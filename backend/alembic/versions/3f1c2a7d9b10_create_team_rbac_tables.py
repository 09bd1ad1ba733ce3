"""create team memberships and team permission grant tables

Revision ID: 3f1c2a7d9b10
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy import text

# revision identifiers, used by Alembic.
revision = "3f1c2a7d9b10"
down_revision = None
branch_labels = None
depends_on = None

ONE_OWNER_INDEX = "uq_team_memberships_one_owner"


def upgrade() -> None:
    op.create_table(
        "team_memberships",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("team_id", "user_id", name="uq_team_memberships_team_user"),
    )
    op.create_index("ix_team_memberships_user_id", "team_memberships", ["user_id"])
    op.create_index(
        ONE_OWNER_INDEX,
        "team_memberships",
        ["team_id"],
        unique=True,
        postgresql_where=text("role = 'owner'"),
        sqlite_where=text("role = 'owner'"),
    )

    op.create_table(
        "team_permissions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("permission", sa.String(length=64), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False),
        sa.Column("granted_by", sa.String(length=64), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("team_id", "role", "permission", name="uq_team_permissions_team_role_permission"),
    )
    op.create_index("ix_team_permissions_team_id", "team_permissions", ["team_id"])


def downgrade() -> None:
    op.drop_index("ix_team_permissions_team_id", table_name="team_permissions")
    op.drop_table("team_permissions")
    op.drop_index(ONE_OWNER_INDEX, table_name="team_memberships")
    op.drop_index("ix_team_memberships_user_id", table_name="team_memberships")
    op.drop_table("team_memberships")

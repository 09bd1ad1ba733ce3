# Import models here so Alembic can discover metadata.
from teamrbac.models.team_membership import TeamMembership  # noqa: F401
from teamrbac.models.team_permission import TeamPermission  # noqa: F401

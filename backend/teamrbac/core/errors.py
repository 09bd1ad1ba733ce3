# teamrbac/core/errors.py
"""
Error taxonomy for the team RBAC engine.

PolicyDenied subclasses are ordinary 4xx denials and are surfaced verbatim to
the HTTP layer. UnknownRole / UnknownPermission are programmer or config
errors (500-class). StoreUnavailable is the only retryable class, and only
for reads.
"""
from __future__ import annotations

from typing import Any


class TeamAccessError(Exception):
    code: str = "team_access_error"
    status_code: int = 500
    retryable: bool = False
    default_message: str = "Team access check failed."

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "message": self.message}
        detail.update({k: v for k, v in self.context.items() if v is not None})
        return detail


# ---------------------------------------------------------
# Policy denials (4xx)
# ---------------------------------------------------------
class PolicyDenied(TeamAccessError):
    status_code = 403


class NotATeamMember(PolicyDenied):
    code = "not_a_team_member"
    default_message = "You are not a member of this team."


class TargetNotMember(PolicyDenied):
    code = "target_not_member"
    status_code = 404
    default_message = "Target user is not a member of this team."


class SelfManagement(PolicyDenied):
    code = "self_management"
    status_code = 400
    default_message = "You cannot manage your own role. Use ownership transfer instead."


class InsufficientPermission(PolicyDenied):
    code = "insufficient_permission"
    default_message = "You do not have permission to perform this action."


class InsufficientRole(PolicyDenied):
    code = "insufficient_role"
    default_message = "Your role in this team is too low for this action."


class InsufficientAuthority(PolicyDenied):
    code = "insufficient_authority"
    default_message = "You cannot manage users with this role."


class NotOwner(PolicyDenied):
    code = "not_owner"
    default_message = "Only the current team owner can do this."


class LastOwner(PolicyDenied):
    code = "last_owner"
    status_code = 409
    default_message = "The team owner cannot be removed. Transfer ownership first."


class NotMember(PolicyDenied):
    code = "not_member"
    status_code = 404
    default_message = "User is not a member of this team."


class AlreadyMember(PolicyDenied):
    code = "already_member"
    status_code = 409
    default_message = "User is already a member of this team."


class OwnershipTransferRequired(PolicyDenied):
    code = "ownership_transfer_required"
    status_code = 409
    default_message = "The owner role can only change hands through ownership transfer."


# ---------------------------------------------------------
# Fatal to the caller (500-class)
# ---------------------------------------------------------
class UnknownRole(TeamAccessError):
    code = "unknown_role"

    def __init__(self, role: Any) -> None:
        super().__init__(f"Unknown team role: {role!r}", role=str(role))


class UnknownPermission(TeamAccessError):
    code = "unknown_permission"

    def __init__(self, permission: Any) -> None:
        super().__init__(f"Unknown permission: {permission!r}", permission=str(permission))


class StoreUnavailable(TeamAccessError):
    code = "store_unavailable"
    status_code = 503
    retryable = True
    default_message = "Permission store is unavailable."

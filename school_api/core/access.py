"""
Role gate and tenant-scope resolution.

Both are pure: they look only at the authenticated identity and the values
the client sent, never at the database, and run before any handler code.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from pydantic import BaseModel

from school_api.core.errors import AuthorizationError, ValidationError
from school_api.models.user import Role


class RequestUser(BaseModel):
    """Identity carried by a verified session token."""
    sub: str
    phone: str
    role: Role
    school_id: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    user: RequestUser
    school_id: Optional[str]  # None only for an unscoped super-admin call


def authorize_role(user: RequestUser, allowed_roles: Iterable[Role] | None) -> None:
    allowed = set(allowed_roles or ())
    if not allowed:
        return
    if user.role not in allowed:
        raise AuthorizationError("You do not have permission to perform this action")


def resolve_school_scope(
    user: RequestUser,
    header_school_id: str | None = None,
    query_school_id: str | None = None,
) -> str | None:
    """
    Non-super-admins are locked to their own school whatever the client
    sends. Super admins pick a school with X-School-Id (or ?schoolId=);
    without one the call is unscoped and None is returned.
    """
    if user.role != Role.SUPER_ADMIN:
        if not user.school_id:
            raise ValidationError("User has no schoolId assigned.")
        return user.school_id

    requested = (header_school_id or "").strip() or (query_school_id or "").strip()
    return requested or None

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from pydantic import ValidationError as PydanticValidationError

from school_api.core.access import (
    RequestContext,
    RequestUser,
    authorize_role,
    resolve_school_scope,
)
from school_api.core.errors import AuthenticationError, ValidationError
from school_api.core.security import decode_access_token
from school_api.models.user import Role

bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> RequestUser:
    """
    Session guard. The token is self-contained: sub/role/schoolId are
    trusted once the signature and expiry check out.
    """
    if not credentials:
        raise AuthenticationError()

    try:
        payload = decode_access_token(credentials.credentials)
        if payload.get("type") != "access":
            raise AuthenticationError()
        return RequestUser(
            sub=str(payload["sub"]),
            phone=payload.get("phone") or "",
            role=payload["role"],
            school_id=payload.get("schoolId"),
        )
    except (JWTError, KeyError, ValueError, PydanticValidationError):
        raise AuthenticationError()


class RouteAccess:
    """
    Per-route access descriptor.

        access = RouteAccess(Role.TEACHER, Role.SCHOOL_ADMIN)
        async def handler(ctx: RequestContext = Depends(access)): ...

    Evaluates the role gate, then resolves the tenant scope, and hands the
    handler a RequestContext. With requires_tenant_scope=True an unscoped
    super-admin call is rejected.
    """

    def __init__(self, *allowed_roles: Role, requires_tenant_scope: bool = True):
        self.allowed_roles = tuple(allowed_roles)
        self.requires_tenant_scope = requires_tenant_scope

    async def __call__(
        self,
        request: Request,
        user: RequestUser = Depends(get_current_user),
    ) -> RequestContext:
        authorize_role(user, self.allowed_roles)

        school_id = resolve_school_scope(
            user,
            header_school_id=request.headers.get("x-school-id"),
            query_school_id=request.query_params.get("schoolId"),
        )
        if self.requires_tenant_scope and not school_id:
            raise ValidationError("School context required. Send the X-School-Id header.")

        return RequestContext(user=user, school_id=school_id)

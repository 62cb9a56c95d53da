"""
FastAPI dependencies for tenant-scoped authorization.

The tenant a check applies to is the {tenant_id} path parameter when the
route has one, otherwise the tenant TenantMiddleware resolved.
"""

import logging

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.database import get_db
from lms_tenancy.exceptions import AuthenticationError, AuthorizationError
from lms_tenancy.services.tenant_resolver import TenantContext, TenantResolver

logger = logging.getLogger(__name__)

_resolver = TenantResolver()


def get_tenant_resolver() -> TenantResolver:
    return _resolver


async def get_current_user_id(request: Request) -> str:
    """User id set by AuthMiddleware; 401 when the caller is anonymous."""
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise AuthenticationError()
    return user_id


async def get_current_tenant_context(request: Request) -> TenantContext:
    """TenantContext set by TenantMiddleware; 403 when no tenant was resolved."""
    context = getattr(request.state, "tenant_context", None)
    if context is None:
        raise AuthorizationError("Tenant context is required but not found")
    return context


def _target_tenant_id(request: Request) -> str:
    tenant_id = request.path_params.get("tenant_id") or getattr(request.state, "tenant_id", None)
    if not tenant_id:
        raise AuthorizationError("Tenant context is required but not found")
    return tenant_id


def _tenant_access_checker(required_role: str | None = None, required_permissions: list[str] | None = None):
    async def checker(
        request: Request,
        user_id: str = Depends(get_current_user_id),
        db: AsyncSession = Depends(get_db),
        resolver: TenantResolver = Depends(get_tenant_resolver),
    ) -> str:
        tenant_id = _target_tenant_id(request)
        allowed = await resolver.validate_tenant_access(
            tenant_id,
            user_id,
            db,
            required_role=required_role,
            required_permissions=required_permissions,
        )
        if not allowed:
            logger.info("Tenant access denied: tenant=%s user=%s", tenant_id, user_id)
            if required_permissions:
                message = f"Missing required permissions: {', '.join(required_permissions)}"
            elif required_role:
                message = f"Requires tenant role '{required_role}' or higher"
            else:
                message = "You are not a member of this tenant"
            raise AuthorizationError(message, details={"tenant_id": tenant_id})
        return user_id

    return checker


def require_tenant_member():
    """Any active member of the tenant."""
    return _tenant_access_checker()


def require_tenant_role(role: str):
    """Members whose role is `role` or higher in the hierarchy."""
    return _tenant_access_checker(required_role=role)


def require_tenant_permissions(*permissions: str):
    """Members holding every one of `permissions`."""
    return _tenant_access_checker(required_permissions=list(permissions))

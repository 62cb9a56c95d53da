"""
Tenant Routes

POST   /api/v1/tenants                                   → create tenant (caller becomes owner)
GET    /api/v1/tenants/current                           → tenant resolved for this request
POST   /api/v1/tenants/invitations/accept                → accept an invitation
GET    /api/v1/tenants/{tenant_id}                       → get tenant
PATCH  /api/v1/tenants/{tenant_id}                       → update tenant
POST   /api/v1/tenants/{tenant_id}/activate|suspend|reactivate
GET    /api/v1/tenants/{tenant_id}/urls                  → primary/admin/api URLs
GET    /api/v1/tenants/{tenant_id}/members               → list members
PUT    /api/v1/tenants/{tenant_id}/members/{user_id}/role
DELETE /api/v1/tenants/{tenant_id}/members/{user_id}
POST   /api/v1/tenants/{tenant_id}/invitations           → invite by email
GET    /api/v1/tenants/{tenant_id}/invitations
POST   /api/v1/tenants/{tenant_id}/domains               → add custom domain
GET    /api/v1/tenants/{tenant_id}/domains
POST   /api/v1/tenants/{tenant_id}/domains/{domain_id}/verify
GET    /api/v1/tenants/{tenant_id}/configuration
PUT    /api/v1/tenants/{tenant_id}/configuration/{category}/{key}
POST   /api/v1/tenants/{tenant_id}/usage                 → record a usage reading
GET    /api/v1/tenants/{tenant_id}/usage
GET    /api/v1/tenants/{tenant_id}/usage/limits
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.constants.roles import TenantRole
from lms_tenancy.database import get_db
from lms_tenancy.exceptions import DomainNotFoundError
from lms_tenancy.permissions_config.tenant_dependencies import (
    get_current_tenant_context,
    get_current_user_id,
    get_tenant_resolver,
    require_tenant_member,
    require_tenant_permissions,
    require_tenant_role,
)
from lms_tenancy.schemas.tenant import (
    ConfigurationResponse,
    ConfigurationSet,
    DomainCreate,
    DomainResponse,
    InvitationAccept,
    InvitationCreate,
    InvitationCreatedResponse,
    InvitationResponse,
    RoleUpdate,
    TenantContextResponse,
    TenantCreate,
    TenantMemberList,
    TenantMemberResponse,
    TenantResponse,
    TenantSuspend,
    TenantUpdate,
    TenantUrlsResponse,
    UsageLimitResponse,
    UsageMetricResponse,
    UsageRecord,
)
from lms_tenancy.services import (
    configuration_service,
    domain_service,
    membership_service,
    tenant_service,
    usage_service,
)
from lms_tenancy.services.tenant_resolver import TenantContext, TenantResolver

router = APIRouter(tags=["Tenants"])
logger = logging.getLogger(__name__)


# ── Tenants ────────────────────────────────────────────────────────────────────


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant_route(
    payload: TenantCreate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Create a tenant owned by the calling user."""
    return await tenant_service.create_tenant(
        name=payload.name,
        subdomain=payload.subdomain,
        owner_id=user_id,
        db=db,
        plan=payload.plan.value,
        isolation_level=payload.isolation_level.value,
        domain=payload.domain,
        description=payload.description,
        features=payload.features,
        branding=payload.branding,
    )


@router.get("/current", response_model=TenantContextResponse)
async def get_current_tenant_route(context: TenantContext = Depends(get_current_tenant_context)):
    """The tenant resolved for this request, with the caller's role when they are a member."""
    return TenantContextResponse(
        tenant=TenantResponse.model_validate(context.tenant),
        user_id=context.user_id,
        user_role=context.user_role,
        permissions=context.permissions,
    )


@router.post("/invitations/accept", response_model=TenantMemberResponse)
async def accept_invitation_route(
    payload: InvitationAccept,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await membership_service.accept_invitation(payload.token, user_id, db)


@router.get("/{tenant_id}", response_model=TenantResponse)
async def get_tenant_route(
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
    _user_id: str = Depends(require_tenant_member()),
):
    return await tenant_service.get_tenant_by_id(tenant_id, db)


@router.patch("/{tenant_id}", response_model=TenantResponse)
async def update_tenant_route(
    tenant_id: str,
    payload: TenantUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(require_tenant_role(TenantRole.ADMIN.value)),
):
    updates = payload.model_dump(mode="json", exclude_none=True)
    return await tenant_service.update_tenant(tenant_id, updates, db, actor_id=user_id)


@router.post("/{tenant_id}/activate", response_model=TenantResponse)
async def activate_tenant_route(
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(require_tenant_role(TenantRole.OWNER.value)),
):
    return await tenant_service.activate_tenant(tenant_id, db, actor_id=user_id)


@router.post("/{tenant_id}/suspend", response_model=TenantResponse)
async def suspend_tenant_route(
    tenant_id: str,
    payload: TenantSuspend,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(require_tenant_role(TenantRole.OWNER.value)),
):
    """Suspend a tenant; it stops resolving until reactivated."""
    return await tenant_service.suspend_tenant(tenant_id, payload.reason, db, actor_id=user_id)


@router.post("/{tenant_id}/reactivate", response_model=TenantResponse)
async def reactivate_tenant_route(
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(require_tenant_role(TenantRole.OWNER.value)),
):
    return await tenant_service.reactivate_tenant(tenant_id, db, actor_id=user_id)


@router.get("/{tenant_id}/urls", response_model=TenantUrlsResponse)
async def tenant_urls_route(
    tenant_id: str,
    base_url: str | None = None,
    db: AsyncSession = Depends(get_db),
    resolver: TenantResolver = Depends(get_tenant_resolver),
    _user_id: str = Depends(require_tenant_member()),
):
    tenant = await tenant_service.get_tenant_by_id(tenant_id, db)
    return resolver.generate_tenant_urls(tenant, base_url=base_url)


# ── Members ────────────────────────────────────────────────────────────────────


@router.get("/{tenant_id}/members", response_model=TenantMemberList)
async def list_members_route(
    tenant_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user_id: str = Depends(require_tenant_member()),
):
    users, total = await membership_service.get_tenant_users(tenant_id, db, page=page, limit=limit)
    return TenantMemberList(
        users=[TenantMemberResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        limit=limit,
    )


@router.put("/{tenant_id}/members/{user_id}/role", response_model=TenantMemberResponse)
async def update_member_role_route(
    tenant_id: str,
    user_id: str,
    payload: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(require_tenant_role(TenantRole.ADMIN.value)),
):
    return await membership_service.update_user_role(
        tenant_id, user_id, payload.role.value, db, permissions=payload.permissions, updated_by=actor_id
    )


@router.delete("/{tenant_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member_route(
    tenant_id: str,
    user_id: str,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(require_tenant_role(TenantRole.ADMIN.value)),
) -> None:
    await membership_service.remove_user_from_tenant(tenant_id, user_id, db, removed_by=actor_id)


# ── Invitations ────────────────────────────────────────────────────────────────


@router.post(
    "/{tenant_id}/invitations",
    response_model=InvitationCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def invite_user_route(
    tenant_id: str,
    payload: InvitationCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(require_tenant_permissions("users.manage")),
):
    return await membership_service.invite_user(
        tenant_id,
        actor_id,
        payload.email,
        db,
        role=payload.role.value,
        permissions=payload.permissions,
        message=payload.message,
        expires_in_days=payload.expires_in_days,
    )


@router.get("/{tenant_id}/invitations", response_model=list[InvitationResponse])
async def list_invitations_route(
    tenant_id: str,
    status_filter: str | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    _user_id: str = Depends(require_tenant_permissions("users.manage")),
):
    return await membership_service.list_invitations(tenant_id, db, status=status_filter)


# ── Domains ────────────────────────────────────────────────────────────────────


@router.post("/{tenant_id}/domains", response_model=DomainResponse, status_code=status.HTTP_201_CREATED)
async def add_domain_route(
    tenant_id: str,
    payload: DomainCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(require_tenant_role(TenantRole.ADMIN.value)),
):
    return await domain_service.add_custom_domain(
        tenant_id, payload.domain, db, domain_type=payload.type.value, actor_id=actor_id
    )


@router.get("/{tenant_id}/domains", response_model=list[DomainResponse])
async def list_domains_route(
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
    _user_id: str = Depends(require_tenant_member()),
):
    return await domain_service.list_domains(tenant_id, db)


@router.post("/{tenant_id}/domains/{domain_id}/verify", response_model=DomainResponse)
async def verify_domain_route(
    tenant_id: str,
    domain_id: str,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(require_tenant_role(TenantRole.ADMIN.value)),
):
    """Check the domain's DNS records; the domain stays unverified if they are not published yet."""
    tenant_domain = await domain_service.get_domain_by_id(domain_id, db)
    if tenant_domain.tenant_id != tenant_id:
        raise DomainNotFoundError(domain_id)
    return await domain_service.verify_domain(domain_id, db, actor_id=actor_id)


# ── Configuration ──────────────────────────────────────────────────────────────


@router.get("/{tenant_id}/configuration", response_model=dict[str, dict[str, Any]])
async def get_configuration_route(
    tenant_id: str,
    category: str | None = None,
    db: AsyncSession = Depends(get_db),
    _user_id: str = Depends(require_tenant_member()),
):
    return await configuration_service.get_configuration_map(tenant_id, db, category=category)


@router.put("/{tenant_id}/configuration/{category}/{key}", response_model=ConfigurationResponse)
async def set_configuration_route(
    tenant_id: str,
    category: str,
    key: str,
    payload: ConfigurationSet,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(require_tenant_permissions("settings.manage")),
):
    return await configuration_service.set_tenant_configuration(
        tenant_id, category, key, payload.value, db, updated_by=actor_id, description=payload.description
    )


# ── Usage ──────────────────────────────────────────────────────────────────────


@router.post("/{tenant_id}/usage", response_model=UsageMetricResponse, status_code=status.HTTP_201_CREATED)
async def record_usage_route(
    tenant_id: str,
    payload: UsageRecord,
    db: AsyncSession = Depends(get_db),
    _user_id: str = Depends(require_tenant_role(TenantRole.ADMIN.value)),
):
    return await usage_service.record_usage_metric(
        tenant_id,
        payload.metric_type,
        payload.value,
        db,
        unit=payload.unit,
        metadata=payload.metadata,
        aggregation=payload.aggregation,
    )


@router.get("/{tenant_id}/usage", response_model=list[UsageMetricResponse])
async def get_usage_route(
    tenant_id: str,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    _user_id: str = Depends(require_tenant_member()),
):
    return await usage_service.get_tenant_usage(tenant_id, db, days=days)


@router.get("/{tenant_id}/usage/limits", response_model=UsageLimitResponse)
async def check_usage_limits_route(
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
    resolver: TenantResolver = Depends(get_tenant_resolver),
    _user_id: str = Depends(require_tenant_member()),
):
    return await resolver.check_usage_limits(tenant_id, db)

"""
Tenant Schemas

Pydantic models for tenant, membership, invitation, domain, configuration
and usage requests and responses.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from lms_tenancy.constants.plans import TenantPlan
from lms_tenancy.constants.roles import TenantRole
from lms_tenancy.models.tenant import IsolationLevel
from lms_tenancy.models.tenant_domain import DomainType
from lms_tenancy.models.tenant_usage import UsageAggregation

# ── Tenants ────────────────────────────────────────────────────────────────────


class TenantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    subdomain: str = Field(..., min_length=1, max_length=63, description="e.g. 'acme' for acme.example.com")
    plan: TenantPlan = TenantPlan.FREE
    isolation_level: IsolationLevel = IsolationLevel.shared
    domain: str | None = Field(None, description="Optional custom domain, e.g. learn.acme.com")
    description: str | None = None
    branding: dict[str, Any] | None = None
    features: dict[str, Any] | None = None


class TenantUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    plan: TenantPlan | None = None
    branding: dict[str, Any] | None = None
    settings: dict[str, Any] | None = None


class TenantSuspend(BaseModel):
    reason: str = Field(..., min_length=1)


class TenantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    subdomain: str
    domain: str | None
    description: str | None
    owner_id: str
    plan: str
    isolation_level: str
    status: str
    schema_name: str | None
    database_name: str | None
    features: dict[str, Any] | None
    branding: dict[str, Any] | None
    settings: dict[str, Any] | None
    trial_ends_at: datetime | None
    suspended_at: datetime | None
    suspension_reason: str | None
    created_at: datetime
    last_access_at: datetime | None


class TenantUrlsResponse(BaseModel):
    primary: str
    admin: str
    api: str
    custom: str | None = None


class TenantContextResponse(BaseModel):
    tenant: TenantResponse
    user_id: str | None = None
    user_role: str | None = None
    permissions: list[str] | None = None


# ── Members & invitations ──────────────────────────────────────────────────────


class TenantMemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    user_id: str
    role: str
    permissions: list[str]
    is_active: bool
    invited_by: str | None
    joined_at: datetime


class TenantMemberList(BaseModel):
    users: list[TenantMemberResponse]
    total: int
    page: int
    limit: int


class RoleUpdate(BaseModel):
    role: TenantRole
    permissions: list[str] | None = Field(None, description="Defaults to the role's default permissions")


class InvitationCreate(BaseModel):
    email: EmailStr
    role: TenantRole = TenantRole.STUDENT
    permissions: list[str] | None = None
    message: str | None = None
    expires_in_days: int | None = Field(None, ge=1, le=90)


class InvitationAccept(BaseModel):
    token: str = Field(..., min_length=1)


class InvitationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    email: str
    role: str
    permissions: list[str]
    status: str
    invited_by: str | None
    message: str | None
    expires_at: datetime
    accepted_at: datetime | None
    accepted_by: str | None
    created_at: datetime


class InvitationCreatedResponse(InvitationResponse):
    """Returned once, to the inviter; the only response that carries the token."""

    token: str


# ── Domains ────────────────────────────────────────────────────────────────────


class DomainCreate(BaseModel):
    domain: str = Field(..., min_length=3, max_length=253)
    type: DomainType = DomainType.PRIMARY


class DomainResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    domain: str
    type: str
    is_verified: bool
    is_active: bool
    ssl_enabled: bool
    ssl_expires_at: datetime | None
    dns_records: list[dict[str, Any]] | None
    verified_at: datetime | None
    created_at: datetime


# ── Configuration ──────────────────────────────────────────────────────────────


class ConfigurationSet(BaseModel):
    value: Any
    description: str | None = None


class ConfigurationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    category: str
    key: str
    value: Any
    description: str | None
    updated_by: str | None
    updated_at: datetime


# ── Usage ──────────────────────────────────────────────────────────────────────


class UsageRecord(BaseModel):
    metric_type: str = Field(..., min_length=1, max_length=100)
    value: float
    unit: str | None = None
    metadata: dict[str, Any] | None = None
    aggregation: UsageAggregation = UsageAggregation.REPLACE


class UsageMetricResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    metric_type: str
    value: float
    unit: str | None
    date: date
    granularity: str
    metadata: dict[str, Any] | None = Field(None, validation_alias="metadata_")


class UsageLimitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    within_limits: bool
    limits: dict[str, Any]
    current: dict[str, Any]
    warnings: list[str]

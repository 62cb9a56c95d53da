"""
Tenant Service

Async lifecycle operations for Tenant entities: creation with isolation
provisioning, lookups used by resolution, updates and status transitions.
All functions accept an injected AsyncSession.
"""

import logging
import re
import uuid
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.config import settings
from lms_tenancy.constants.plans import TenantPlan, get_default_branding, get_default_settings, get_plan_features
from lms_tenancy.constants.roles import OWNER_PERMISSIONS, TenantRole
from lms_tenancy.exceptions import (
    DuplicateResourceError,
    InvalidStatusTransitionError,
    TenantNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from lms_tenancy.models.tenant import TENANT_STATUS_TRANSITIONS, IsolationLevel, Tenant, TenantStatus
from lms_tenancy.models.tenant_domain import DomainType, TenantDomain
from lms_tenancy.models.tenant_user import TenantUser
from lms_tenancy.models.user import User
from lms_tenancy.services.domain_service import is_domain_registered, normalize_domain, register_domain
from lms_tenancy.services.isolation import TenantProvisioner, default_provisioner
from lms_tenancy.utils.audit_log import log_audit_event, snapshot
from lms_tenancy.utils.dates import utc_now
from lms_tenancy.utils.transactions import unit_of_work

logger = logging.getLogger(__name__)

_SUBDOMAIN_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
# Matches "tenants.domain" (SQLite) and "Key (domain)" (PostgreSQL) but not "subdomain"
_DOMAIN_COLUMN_RE = re.compile(r"\bdomain\b")

UPDATABLE_FIELDS = {"name", "description", "branding", "settings", "plan"}


def validate_subdomain(subdomain: str) -> str:
    """Normalise a requested subdomain, rejecting malformed or reserved labels."""
    candidate = (subdomain or "").strip().lower()
    if not _SUBDOMAIN_RE.match(candidate):
        raise ValidationError(
            "Subdomain must be 1-63 lowercase letters, digits or hyphens", field="subdomain"
        )
    if candidate in settings.reserved_subdomains:
        raise ValidationError(f"Subdomain '{candidate}' is reserved", field="subdomain")
    return candidate


async def _subdomain_taken(subdomain: str, db: AsyncSession) -> bool:
    result = await db.execute(select(Tenant.id).where(Tenant.subdomain == subdomain))
    return result.first() is not None


async def _domain_taken(domain: str, db: AsyncSession) -> bool:
    if await is_domain_registered(domain, db):
        return True
    result = await db.execute(select(Tenant.id).where(Tenant.domain == domain))
    return result.first() is not None


def _duplicate_from_integrity_error(error: IntegrityError, subdomain: str, domain: str | None) -> DuplicateResourceError:
    """Map a tenants-table unique violation to the column that caused it."""
    if domain and _DOMAIN_COLUMN_RE.search(str(error.orig)):
        return DuplicateResourceError("Tenant", "domain", domain, message=f"Domain '{domain}' is already in use")
    return DuplicateResourceError(
        "Tenant", "subdomain", subdomain, message=f"Subdomain '{subdomain}' is already taken"
    )


async def create_tenant(
    name: str,
    subdomain: str,
    owner_id: str,
    db: AsyncSession,
    plan: str | None = None,
    isolation_level: str | None = None,
    domain: str | None = None,
    description: str | None = None,
    features: dict | None = None,
    branding: dict | None = None,
    provisioner: TenantProvisioner | None = None,
) -> Tenant:
    """
    Create a tenant, its owner membership and optional custom domain in one transaction.

    Free-plan tenants start in trial for settings.trial_days; every other plan
    starts active. The pre-checks only produce friendly errors; the
    unique constraints on tenants.subdomain and tenants.domain are what reject
    concurrent duplicates, and each conflict is reported against its own field.
    """
    subdomain = validate_subdomain(subdomain)
    domain = normalize_domain(domain) if domain else None
    plan = TenantPlan(plan or TenantPlan.FREE).value
    isolation_level = IsolationLevel(isolation_level or IsolationLevel.shared).value
    provisioner = provisioner or default_provisioner
    is_free = plan == TenantPlan.FREE.value

    async with unit_of_work(db):
        if await _subdomain_taken(subdomain, db):
            raise DuplicateResourceError(
                "Tenant", "subdomain", subdomain, message=f"Subdomain '{subdomain}' is already taken"
            )
        if domain and await _domain_taken(domain, db):
            raise DuplicateResourceError("Tenant", "domain", domain, message=f"Domain '{domain}' is already in use")

        owner = await db.get(User, owner_id)
        if owner is None:
            raise UserNotFoundError(owner_id)

        plan_features = get_plan_features(plan)
        if features:
            plan_features.update(features)

        tenant = Tenant(
            id=str(uuid.uuid4()),
            name=name,
            subdomain=subdomain,
            domain=domain,
            description=description,
            owner_id=owner_id,
            plan=plan,
            isolation_level=isolation_level,
            status=TenantStatus.trial.value if is_free else TenantStatus.active.value,
            features=plan_features,
            branding=branding or get_default_branding(),
            settings=get_default_settings(),
            trial_ends_at=utc_now() + timedelta(days=settings.trial_days) if is_free else None,
        )
        db.add(tenant)
        try:
            await db.flush()
        except IntegrityError as e:
            raise _duplicate_from_integrity_error(e, subdomain, domain) from e

        await provisioner.provision(tenant, db)

        db.add(
            TenantUser(
                tenant_id=tenant.id,
                user_id=owner_id,
                role=TenantRole.OWNER.value,
                permissions=list(OWNER_PERMISSIONS),
            )
        )
        await db.flush()

        if tenant.domain:
            await register_domain(tenant.id, tenant.domain, db, domain_type=DomainType.PRIMARY.value)

        await log_audit_event(
            db,
            tenant.id,
            "tenant.created",
            user_id=owner_id,
            resource="tenant",
            resource_id=tenant.id,
            changes={"before": None, "after": snapshot(tenant)},
        )

    logger.info("Tenant created: id=%s subdomain=%s plan=%s", tenant.id, tenant.subdomain, tenant.plan)
    return tenant


async def get_tenant_by_id(tenant_id: str, db: AsyncSession) -> Tenant:
    """Return a Tenant by primary key; raises TenantNotFoundError on a miss."""
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise TenantNotFoundError(tenant_id)
    return tenant


async def get_tenant_by_subdomain(subdomain: str, db: AsyncSession, active_only: bool = True) -> Tenant | None:
    """Return a Tenant by subdomain, or None if not found."""
    query = select(Tenant).where(Tenant.subdomain == subdomain.lower())
    if active_only:
        query = query.where(Tenant.status == TenantStatus.active.value)
    result = await db.execute(query)
    return result.scalars().first()


async def get_tenant_by_domain(domain: str, db: AsyncSession) -> Tenant | None:
    """Return the Tenant owning an active custom domain, or None if not found."""
    domain = domain.lower()
    result = await db.execute(
        select(Tenant)
        .join(TenantDomain, TenantDomain.tenant_id == Tenant.id)
        .where(TenantDomain.domain == domain, TenantDomain.is_active.is_(True))
    )
    tenant = result.scalars().first()
    if tenant is not None:
        return tenant
    result = await db.execute(select(Tenant).where(Tenant.domain == domain))
    return result.scalars().first()


async def list_tenants(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 20,
    status: str | None = None,
) -> list[Tenant]:
    """Return a paginated list of tenants, optionally filtered by status."""
    query = select(Tenant).order_by(Tenant.created_at)
    if status:
        query = query.where(Tenant.status == status)
    result = await db.execute(query.offset(skip).limit(limit))
    return list(result.scalars().all())


async def update_tenant(
    tenant_id: str,
    updates: dict,
    db: AsyncSession,
    actor_id: str | None = None,
) -> Tenant:
    """
    Apply a partial update to a Tenant.

    Only keys in UPDATABLE_FIELDS are changed. Changing the plan recomputes
    the plan-derived features.
    """
    async with unit_of_work(db):
        tenant = await get_tenant_by_id(tenant_id, db)
        before: dict = {}
        after: dict = {}
        for field, value in updates.items():
            if field not in UPDATABLE_FIELDS or value is None:
                continue
            if field == "plan":
                value = TenantPlan(value).value
                if value != tenant.plan:
                    before["features"] = tenant.features
                    tenant.features = get_plan_features(value)
                    after["features"] = tenant.features
            before[field] = getattr(tenant, field)
            setattr(tenant, field, value)
            after[field] = value

        if after:
            await log_audit_event(
                db,
                tenant.id,
                "tenant.updated",
                user_id=actor_id,
                resource="tenant",
                resource_id=tenant.id,
                changes={"before": before, "after": after},
            )

    logger.info("Tenant updated: id=%s fields=%s", tenant.id, sorted(after))
    return tenant


async def touch_last_access(tenant: Tenant, db: AsyncSession) -> None:
    """Stamp the tenant's last access time."""
    tenant.last_access_at = utc_now()
    await db.commit()


async def _transition_status(
    tenant_id: str,
    source: TenantStatus,
    target: TenantStatus,
    action: str,
    db: AsyncSession,
    actor_id: str | None = None,
    reason: str | None = None,
) -> Tenant:
    async with unit_of_work(db):
        tenant = await get_tenant_by_id(tenant_id, db)
        current = tenant.status
        if current != source.value or (current, target.value) not in TENANT_STATUS_TRANSITIONS:
            raise InvalidStatusTransitionError(current, target.value)

        tenant.status = target.value
        after: dict = {"status": target.value}
        if target == TenantStatus.suspended:
            tenant.suspended_at = utc_now()
            tenant.suspension_reason = reason
            after["reason"] = reason
        elif current == TenantStatus.suspended.value:
            tenant.suspended_at = None
            tenant.suspension_reason = None

        await log_audit_event(
            db,
            tenant.id,
            action,
            user_id=actor_id,
            resource="tenant",
            resource_id=tenant.id,
            changes={"before": {"status": current}, "after": after},
        )
    return tenant


async def activate_tenant(tenant_id: str, db: AsyncSession, actor_id: str | None = None) -> Tenant:
    """Move a trial tenant to active."""
    tenant = await _transition_status(
        tenant_id, TenantStatus.trial, TenantStatus.active, "tenant.activated", db, actor_id=actor_id
    )
    logger.info("Tenant activated: id=%s", tenant.id)
    return tenant


async def suspend_tenant(tenant_id: str, reason: str, db: AsyncSession, actor_id: str | None = None) -> Tenant:
    """Suspend an active tenant, recording when and why."""
    tenant = await _transition_status(
        tenant_id,
        TenantStatus.active,
        TenantStatus.suspended,
        "tenant.suspended",
        db,
        actor_id=actor_id,
        reason=reason,
    )
    logger.info("Tenant suspended: id=%s reason=%s", tenant.id, reason)
    return tenant


async def reactivate_tenant(tenant_id: str, db: AsyncSession, actor_id: str | None = None) -> Tenant:
    """Return a suspended tenant to active and clear the suspension fields."""
    tenant = await _transition_status(
        tenant_id, TenantStatus.suspended, TenantStatus.active, "tenant.reactivated", db, actor_id=actor_id
    )
    logger.info("Tenant reactivated: id=%s", tenant.id)
    return tenant

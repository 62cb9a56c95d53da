"""
Domain Service

Custom domains for tenants. A new domain is registered unverified with a
generated DNS record set (CNAME to the platform host plus a TXT challenge);
verification checks those records through a DnsVerifier and, on success,
enables SSL.
"""

import logging
import re
import secrets
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.config import settings
from lms_tenancy.exceptions import DomainNotFoundError, DuplicateResourceError, ValidationError
from lms_tenancy.models.tenant_domain import DomainType, TenantDomain
from lms_tenancy.utils.audit_log import log_audit_event
from lms_tenancy.utils.dates import utc_now
from lms_tenancy.utils.transactions import unit_of_work

logger = logging.getLogger(__name__)

_DOMAIN_RE = re.compile(r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")

DNS_RECORD_TTL = 300


def normalize_domain(domain: str) -> str:
    """Lowercase a domain and validate it as a fully-qualified hostname."""
    candidate = (domain or "").strip().lower().rstrip(".")
    if not _DOMAIN_RE.match(candidate):
        raise ValidationError(f"Invalid domain name: '{domain}'", field="domain")
    return candidate


def generate_dns_records(domain: str) -> list[dict]:
    """Records the tenant must publish before the domain can be verified."""
    return [
        {
            "type": "CNAME",
            "name": domain,
            "value": settings.platform_host,
            "ttl": DNS_RECORD_TTL,
            "verified": False,
        },
        {
            "type": "TXT",
            "name": f"_verification.{domain}",
            "value": secrets.token_hex(16),
            "ttl": DNS_RECORD_TTL,
            "verified": False,
        },
    ]


class DnsVerifier:
    """Checks that a domain publishes its expected DNS records."""

    async def verify(self, domain: str, records: list[dict]) -> bool:
        raise NotImplementedError


class AcceptingDnsVerifier(DnsVerifier):
    """Treats every record set as published. Stands in until a resolver is wired up."""

    async def verify(self, domain: str, records: list[dict]) -> bool:
        return True


default_verifier = AcceptingDnsVerifier()


async def is_domain_registered(domain: str, db: AsyncSession) -> bool:
    result = await db.execute(select(TenantDomain.id).where(TenantDomain.domain == domain))
    return result.first() is not None


async def register_domain(
    tenant_id: str,
    domain: str,
    db: AsyncSession,
    domain_type: str = DomainType.PRIMARY.value,
) -> TenantDomain:
    """
    Insert an unverified TenantDomain in the caller's transaction.

    Does not commit. A domain already registered to any tenant raises
    DuplicateResourceError, whether caught by the pre-check or by the
    unique constraint.
    """
    domain = normalize_domain(domain)
    domain_type = DomainType(domain_type).value

    if await is_domain_registered(domain, db):
        raise DuplicateResourceError("TenantDomain", "domain", domain, message=f"Domain '{domain}' is already in use")

    tenant_domain = TenantDomain(
        tenant_id=tenant_id,
        domain=domain,
        type=domain_type,
        is_verified=False,
        is_active=True,
        ssl_enabled=False,
        dns_records=generate_dns_records(domain),
    )
    db.add(tenant_domain)
    try:
        await db.flush()
    except IntegrityError as e:
        raise DuplicateResourceError(
            "TenantDomain", "domain", domain, message=f"Domain '{domain}' is already in use"
        ) from e
    return tenant_domain


async def add_custom_domain(
    tenant_id: str,
    domain: str,
    db: AsyncSession,
    domain_type: str = DomainType.PRIMARY.value,
    actor_id: str | None = None,
) -> TenantDomain:
    """Register a custom domain for a tenant and commit it."""
    # Deferred import: tenant_service depends on this module
    from lms_tenancy.services.tenant_service import get_tenant_by_id

    async with unit_of_work(db):
        await get_tenant_by_id(tenant_id, db)
        tenant_domain = await register_domain(tenant_id, domain, db, domain_type=domain_type)
        await log_audit_event(
            db,
            tenant_id,
            "domain.added",
            user_id=actor_id,
            resource="tenant_domain",
            resource_id=tenant_domain.id,
            changes={"before": None, "after": {"domain": tenant_domain.domain, "type": tenant_domain.type}},
        )

    logger.info("Custom domain added to tenant %s: %s", tenant_id, tenant_domain.domain)
    return tenant_domain


async def get_domain_by_id(domain_id: str, db: AsyncSession) -> TenantDomain:
    tenant_domain = await db.get(TenantDomain, domain_id)
    if tenant_domain is None:
        raise DomainNotFoundError(domain_id)
    return tenant_domain


async def list_domains(tenant_id: str, db: AsyncSession) -> list[TenantDomain]:
    result = await db.execute(
        select(TenantDomain).where(TenantDomain.tenant_id == tenant_id).order_by(TenantDomain.created_at)
    )
    return list(result.scalars().all())


async def verify_domain(
    domain_id: str,
    db: AsyncSession,
    verifier: DnsVerifier | None = None,
    actor_id: str | None = None,
) -> TenantDomain:
    """
    Verify a domain's DNS records and enable SSL on success.

    Safe to retry: an already-verified domain is returned unchanged, and a
    failed check leaves the domain unverified without raising.
    """
    verifier = verifier or default_verifier

    async with unit_of_work(db):
        tenant_domain = await get_domain_by_id(domain_id, db)
        if tenant_domain.is_verified:
            return tenant_domain

        records = tenant_domain.dns_records or []
        if not await verifier.verify(tenant_domain.domain, records):
            logger.info("DNS verification pending for domain %s", tenant_domain.domain)
            return tenant_domain

        now = utc_now()
        tenant_domain.is_verified = True
        tenant_domain.verified_at = now
        tenant_domain.dns_records = [{**record, "verified": True} for record in records]
        tenant_domain.ssl_enabled = True
        tenant_domain.ssl_expires_at = now + timedelta(days=settings.ssl_validity_days)

        await log_audit_event(
            db,
            tenant_domain.tenant_id,
            "domain.verified",
            user_id=actor_id,
            resource="tenant_domain",
            resource_id=tenant_domain.id,
            changes={"before": {"is_verified": False}, "after": {"is_verified": True, "ssl_enabled": True}},
        )

    logger.info("Domain verified: %s", tenant_domain.domain)
    return tenant_domain

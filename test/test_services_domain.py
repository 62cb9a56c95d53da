"""
Tests for domain service

Tests custom domain registration, DNS record generation and verification.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from lms_tenancy.exceptions import DomainNotFoundError, DuplicateResourceError, TenantNotFoundError, ValidationError
from lms_tenancy.models import TenantAuditLog
from lms_tenancy.services import domain_service
from lms_tenancy.services.domain_service import (
    DnsVerifier,
    add_custom_domain,
    generate_dns_records,
    list_domains,
    normalize_domain,
    verify_domain,
)
from lms_tenancy.services.tenant_service import get_tenant_by_domain


class RejectingDnsVerifier(DnsVerifier):
    def __init__(self):
        self.calls = 0

    async def verify(self, domain, records):
        self.calls += 1
        return False


class TestNormalizeDomain:
    def test_lowercases_and_strips_trailing_dot(self):
        assert normalize_domain(" Learn.Acme.COM. ") == "learn.acme.com"

    @pytest.mark.parametrize("domain", ["", "localhost", "acme..com", "-acme.com", "acme.c", "ac me.com"])
    def test_rejects_malformed(self, domain):
        with pytest.raises(ValidationError):
            normalize_domain(domain)


class TestDnsRecords:
    def test_cname_and_txt_generated(self):
        cname, txt = generate_dns_records("learn.acme.com")

        assert cname["type"] == "CNAME"
        assert cname["name"] == "learn.acme.com"
        assert cname["value"] == "lms.example.com"
        assert txt["type"] == "TXT"
        assert txt["name"] == "_verification.learn.acme.com"
        assert len(txt["value"]) == 32
        assert cname["verified"] is False and txt["verified"] is False

    def test_challenge_is_random(self):
        assert generate_dns_records("a.com")[1]["value"] != generate_dns_records("a.com")[1]["value"]


class TestAddCustomDomain:
    async def test_domain_added_unverified(self, db, active_tenant, owner):
        domain = await add_custom_domain(active_tenant.id, "Learn.Acme.com", db, actor_id=owner.id)

        assert domain.domain == "learn.acme.com"
        assert domain.is_verified is False
        assert domain.ssl_enabled is False
        assert domain.is_active is True
        assert len(domain.dns_records) == 2

        audit = (
            await db.execute(select(TenantAuditLog).where(TenantAuditLog.action == "domain.added"))
        ).scalars().one()
        assert audit.resource_id == domain.id

    async def test_domain_resolves_to_tenant(self, db, active_tenant):
        await add_custom_domain(active_tenant.id, "learn.acme.com", db)

        tenant = await get_tenant_by_domain("learn.acme.com", db)
        assert tenant.id == active_tenant.id

    async def test_domain_unique_across_tenants(self, db, active_tenant, make_user):
        from lms_tenancy.services.tenant_service import create_tenant

        other_owner = await make_user("owner@globex.test")
        other = await create_tenant(name="Globex", subdomain="globex", owner_id=other_owner.id, db=db)
        other_id = other.id
        await add_custom_domain(active_tenant.id, "learn.acme.com", db)

        with pytest.raises(DuplicateResourceError):
            await add_custom_domain(other_id, "LEARN.acme.com", db)

        assert await list_domains(other_id, db) == []

    async def test_unique_constraint_rejects_duplicate_when_precheck_misses(self, db, active_tenant, make_user, monkeypatch):
        from lms_tenancy.services.tenant_service import create_tenant

        other_owner = await make_user("owner@globex.test")
        other = await create_tenant(name="Globex", subdomain="globex", owner_id=other_owner.id, db=db)
        other_id = other.id
        await add_custom_domain(active_tenant.id, "learn.acme.com", db)
        monkeypatch.setattr(domain_service, "is_domain_registered", AsyncMock(return_value=False))

        with pytest.raises(DuplicateResourceError) as exc_info:
            await add_custom_domain(other_id, "learn.acme.com", db)

        assert exc_info.value.details["field"] == "domain"
        assert await list_domains(other_id, db) == []
        added = await db.scalar(
            select(func.count()).select_from(TenantAuditLog).where(TenantAuditLog.action == "domain.added")
        )
        assert added == 1

    async def test_unknown_tenant(self, db):
        with pytest.raises(TenantNotFoundError):
            await add_custom_domain("missing", "learn.acme.com", db)

    async def test_list_domains(self, db, active_tenant):
        await add_custom_domain(active_tenant.id, "learn.acme.com", db)
        await add_custom_domain(active_tenant.id, "acme-academy.org", db, domain_type="alias")

        domains = await list_domains(active_tenant.id, db)
        assert [d.domain for d in domains] == ["learn.acme.com", "acme-academy.org"]
        assert domains[1].type == "alias"


class TestVerifyDomain:
    async def test_verification_enables_ssl(self, db, active_tenant):
        domain = await add_custom_domain(active_tenant.id, "learn.acme.com", db)

        domain = await verify_domain(domain.id, db)

        assert domain.is_verified is True
        assert domain.verified_at is not None
        assert domain.ssl_enabled is True
        assert (domain.ssl_expires_at - domain.verified_at).days == 90
        assert all(record["verified"] for record in domain.dns_records)

    async def test_verification_is_idempotent(self, db, active_tenant):
        domain = await add_custom_domain(active_tenant.id, "learn.acme.com", db)
        first = await verify_domain(domain.id, db)
        verified_at = first.verified_at

        verifier = RejectingDnsVerifier()
        second = await verify_domain(domain.id, db, verifier=verifier)

        assert second.is_verified is True
        assert second.verified_at == verified_at
        assert verifier.calls == 0

        audits = (
            await db.execute(select(TenantAuditLog).where(TenantAuditLog.action == "domain.verified"))
        ).scalars().all()
        assert len(audits) == 1

    async def test_failed_check_leaves_domain_unverified(self, db, active_tenant):
        domain = await add_custom_domain(active_tenant.id, "learn.acme.com", db)
        verifier = RejectingDnsVerifier()

        domain = await verify_domain(domain.id, db, verifier=verifier)

        assert verifier.calls == 1
        assert domain.is_verified is False
        assert domain.ssl_enabled is False

    async def test_unknown_domain(self, db):
        with pytest.raises(DomainNotFoundError):
            await verify_domain("missing", db)

"""
Tenant Resolution

Identifies the tenant a request belongs to by running an ordered chain of
strategies (header, custom domain, subdomain, path) and stopping at the
first match. Only active tenants resolve; trial and suspended tenants are
invisible here even when a strategy finds their id.

Strategies work on a TenantRequest, a framework-neutral view of the
request, so they can be exercised without an ASGI app.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError

from lms_tenancy.config import settings
from lms_tenancy.constants.plans import UNLIMITED
from lms_tenancy.constants.roles import has_required_role
from lms_tenancy.exceptions import TenancyError, TenantNotFoundError
from lms_tenancy.services.configuration_service import get_configuration_map
from lms_tenancy.services.membership_service import get_tenant_member
from lms_tenancy.services.tenant_service import (
    get_tenant_by_domain,
    get_tenant_by_id,
    get_tenant_by_subdomain,
    touch_last_access,
)
from lms_tenancy.services.usage_service import (
    METRIC_ACTIVE_USERS,
    METRIC_STORAGE_USED,
    METRIC_TOTAL_COURSES,
    get_current_usage,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.ext.asyncio import AsyncSession
    from starlette.requests import Request

    from lms_tenancy.models.tenant import Tenant

logger = logging.getLogger(__name__)


def _normalize_host(host: str | None) -> str:
    # Strip port if present
    return (host or "").split(":")[0].strip().lower()


@dataclass(frozen=True)
class TenantRequest:
    """
    The parts of an inbound request that tenant resolution looks at.

    Header names are lowercase. host comes from the Host header, falling
    back to X-Forwarded-Host, without its port.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    path: str = "/"
    user_id: str | None = None

    @classmethod
    def build(cls, headers: Mapping[str, str] | None = None, path: str = "/", user_id: str | None = None) -> TenantRequest:
        return cls(
            headers={name.lower(): value for name, value in (headers or {}).items()},
            path=path or "/",
            user_id=user_id,
        )

    @classmethod
    def from_request(cls, request: Request) -> TenantRequest:
        return cls.build(
            headers=dict(request.headers),
            path=request.url.path,
            user_id=getattr(request.state, "user_id", None),
        )

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower()) or None

    @property
    def host(self) -> str:
        return _normalize_host(self.header("host") or self.header("x-forwarded-host"))


# ============================================================================
# Strategies
# ============================================================================


class StrategyOutcome(str, enum.Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    FAILED = "failed"


@dataclass(frozen=True)
class StrategyResult:
    outcome: StrategyOutcome
    tenant_id: str | None = None
    error: Exception | None = None

    @classmethod
    def matched(cls, tenant_id: str) -> StrategyResult:
        return cls(StrategyOutcome.MATCHED, tenant_id=tenant_id)

    @classmethod
    def no_match(cls) -> StrategyResult:
        return cls(StrategyOutcome.NO_MATCH)

    @classmethod
    def failed(cls, error: Exception) -> StrategyResult:
        return cls(StrategyOutcome.FAILED, error=error)


class TenantResolutionStrategy:
    """One way of mapping a request to a tenant id."""

    name = "strategy"

    async def lookup(self, request: TenantRequest, db: AsyncSession) -> str | None:
        raise NotImplementedError

    async def resolve(self, request: TenantRequest, db: AsyncSession) -> StrategyResult:
        try:
            tenant_id = await self.lookup(request, db)
        except Exception as e:
            return StrategyResult.failed(e)
        if tenant_id:
            return StrategyResult.matched(tenant_id)
        return StrategyResult.no_match()


class HeaderStrategy(TenantResolutionStrategy):
    """Takes the tenant id verbatim from an explicit header; no lookup."""

    name = "header"

    def __init__(self, header_name: str | None = None):
        self.header_name = (header_name or settings.tenant_header).lower()

    async def lookup(self, request: TenantRequest, db: AsyncSession) -> str | None:
        return request.header(self.header_name)


class DomainStrategy(TenantResolutionStrategy):
    """Matches the host exactly against registered custom domains."""

    name = "domain"

    async def lookup(self, request: TenantRequest, db: AsyncSession) -> str | None:
        host = request.host
        if not host:
            return None
        tenant = await get_tenant_by_domain(host, db)
        return tenant.id if tenant else None


class SubdomainStrategy(TenantResolutionStrategy):
    """
    Uses the first label of a host with at least three labels.

    acme.example.com -> "acme"; example.com and www.example.com never match.
    """

    name = "subdomain"

    def __init__(self, reserved: list[str] | None = None):
        self.reserved = set(reserved if reserved is not None else settings.reserved_subdomains)

    async def lookup(self, request: TenantRequest, db: AsyncSession) -> str | None:
        parts = request.host.split(".")
        if len(parts) < 3:
            return None
        subdomain = parts[0]
        if not subdomain or subdomain in self.reserved:
            return None
        tenant = await get_tenant_by_subdomain(subdomain, db)
        return tenant.id if tenant else None


class PathStrategy(TenantResolutionStrategy):
    """
    Uses the first path segment, first as a subdomain, then as a tenant id.

    Lookup errors are treated as no match.
    """

    name = "path"

    async def lookup(self, request: TenantRequest, db: AsyncSession) -> str | None:
        parts = request.path.split("/")
        if len(parts) < 2 or not parts[1]:
            return None
        identifier = parts[1]

        try:
            tenant = await get_tenant_by_subdomain(identifier, db)
            if tenant:
                return tenant.id
            tenant = await get_tenant_by_id(identifier, db)
            return tenant.id
        except TenantNotFoundError:
            return None
        except SQLAlchemyError as e:
            logger.debug("Path lookup for '%s' failed: %s", identifier, e)
            await db.rollback()
            return None


def default_strategies() -> list[TenantResolutionStrategy]:
    """Header, domain, subdomain, path: highest priority first."""
    return [HeaderStrategy(), DomainStrategy(), SubdomainStrategy(), PathStrategy()]


# ============================================================================
# Resolver
# ============================================================================


@dataclass
class TenantContext:
    """
    The resolved tenant plus, when the caller is a member, their role.

    An authenticated user who is not a member gets a context with only the
    tenant set; rejecting them is up to the caller.
    """

    tenant: Tenant
    user_id: str | None = None
    user_role: str | None = None
    permissions: list[str] | None = None

    @property
    def tenant_id(self) -> str:
        return self.tenant.id

    @property
    def is_member(self) -> bool:
        return self.user_role is not None


@dataclass
class UsageLimitReport:
    within_limits: bool = True
    limits: dict[str, Any] = field(default_factory=dict)
    current: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


# (feature key, usage metric, label, unit)
_LIMIT_DIMENSIONS = (
    ("max_users", METRIC_ACTIVE_USERS, "User", ""),
    ("max_courses", METRIC_TOTAL_COURSES, "Course", ""),
    ("max_storage_gb", METRIC_STORAGE_USED, "Storage", "GB"),
)


def _format_amount(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


class TenantResolver:
    """Resolves tenants from requests and answers access and quota questions about them."""

    def __init__(
        self,
        strategies: list[TenantResolutionStrategy] | None = None,
        main_domains: list[str] | None = None,
        reserved_subdomains: list[str] | None = None,
    ):
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.main_domains = list(main_domains if main_domains is not None else settings.main_domains)
        self.reserved_subdomains = set(
            reserved_subdomains if reserved_subdomains is not None else settings.reserved_subdomains
        )

    async def resolve_tenant(self, request: TenantRequest, db: AsyncSession) -> Tenant | None:
        """Return the active tenant the request belongs to, or None."""
        tenant_id = None
        for strategy in self.strategies:
            result = await strategy.resolve(request, db)
            if result.outcome == StrategyOutcome.MATCHED:
                tenant_id = result.tenant_id
                logger.debug("Tenant resolved via %s: %s", strategy.name, tenant_id)
                break
            if result.outcome == StrategyOutcome.FAILED:
                logger.warning("Strategy %s failed: %s", strategy.name, result.error)
                await db.rollback()

        if not tenant_id:
            logger.debug("No tenant could be resolved from request")
            return None

        try:
            tenant = await get_tenant_by_id(tenant_id, db)
        except (TenancyError, SQLAlchemyError) as e:
            logger.error("Failed to get tenant %s: %s", tenant_id, e)
            return None

        if not tenant.is_active:
            logger.warning("Tenant %s is not active: %s", tenant_id, tenant.status)
            return None

        await touch_last_access(tenant, db)
        return tenant

    async def resolve_tenant_context(self, request: TenantRequest, db: AsyncSession) -> TenantContext | None:
        tenant = await self.resolve_tenant(request, db)
        if tenant is None:
            return None

        user_id = request.user_id
        if not user_id:
            return TenantContext(tenant=tenant)

        try:
            member = await get_tenant_member(tenant.id, user_id, db)
        except SQLAlchemyError as e:
            logger.error("Failed to resolve tenant context: %s", e)
            return TenantContext(tenant=tenant)

        if member is None or not member.is_active:
            return TenantContext(tenant=tenant)

        return TenantContext(
            tenant=tenant,
            user_id=user_id,
            user_role=member.role,
            permissions=list(member.permissions or []),
        )

    async def validate_tenant_access(
        self,
        tenant_id: str,
        user_id: str,
        db: AsyncSession,
        required_role: str | None = None,
        required_permissions: list[str] | None = None,
    ) -> bool:
        """
        Check a user's membership against a minimum role and required permissions.

        Roles compare by position in the hierarchy; permissions must all be
        present by exact name. Inactive members, unknown roles and lookup
        errors all deny access.
        """
        try:
            member = await get_tenant_member(tenant_id, user_id, db)
        except Exception as e:
            logger.error("Failed to validate tenant access: %s", e)
            return False

        if member is None or not member.is_active:
            return False

        if required_role and not has_required_role(member.role, required_role):
            return False

        if required_permissions:
            granted = set(member.permissions or [])
            if not all(permission in granted for permission in required_permissions):
                return False

        return True

    async def check_usage_limits(self, tenant_id: str, db: AsyncSession) -> UsageLimitReport:
        """
        Compare today's usage with the tenant's plan limits.

        A missing or UNLIMITED limit is not checked; any other value,
        including 0, is a hard cap. Warnings start at
        settings.usage_warning_ratio of a cap. Errors are reported as within
        limits with no warnings.
        """
        try:
            tenant = await get_tenant_by_id(tenant_id, db)
            current = await get_current_usage(tenant_id, db)
        except Exception as e:
            logger.error("Failed to check usage limits: %s", e)
            return UsageLimitReport()

        features = tenant.features or {}
        report = UsageLimitReport(current=current)

        for feature_key, metric, label, unit in _LIMIT_DIMENSIONS:
            limit = features.get(feature_key)
            report.limits[feature_key] = limit
            if limit is None or limit == UNLIMITED:
                continue

            used = current.get(metric, 0)
            usage = f"{_format_amount(used)}{unit}/{_format_amount(limit)}{unit}"
            if used >= limit:
                report.within_limits = False
                report.warnings.append(f"{label} limit reached: {usage}")
            elif used >= limit * settings.usage_warning_ratio:
                percent = round(settings.usage_warning_ratio * 100)
                report.warnings.append(f"{label} limit warning: {usage} ({percent}% full)")

        return report

    def is_tenant_request(self, request: TenantRequest) -> bool:
        """
        Cheap guess at whether resolution is worth attempting.

        True when any of: tenant header present, host has a real subdomain,
        host is outside the main domains, path has two or more segments.
        False positives are expected; this is not an authorization check.
        """
        host = request.host
        if request.header(settings.tenant_header):
            return True
        if self._has_subdomain(host):
            return True
        if host and self._is_custom_domain(host):
            return True
        return len(request.path.split("/")) > 2

    def generate_tenant_urls(self, tenant: Tenant, base_url: str | None = None) -> dict[str, str | None]:
        """Primary, admin and API URLs for a tenant, preferring its custom domain."""
        custom_url = None
        if tenant.domain:
            primary_url = f"https://{tenant.domain}"
            custom_url = primary_url
        else:
            base_host = urlparse(base_url or f"https://{settings.app_domain}").netloc or settings.app_domain
            primary_url = f"https://{tenant.subdomain}.{base_host}"

        return {
            "primary": primary_url,
            "admin": f"{primary_url}/admin",
            "api": f"{primary_url}/api",
            "custom": custom_url,
        }

    async def get_tenant_config(
        self,
        tenant_id: str,
        db: AsyncSession,
        category: str | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Nested {category: {key: value}} configuration, or {} on error."""
        try:
            return await get_configuration_map(tenant_id, db, category=category)
        except Exception as e:
            logger.error("Failed to get tenant config: %s", e)
            return {}

    def _has_subdomain(self, host: str) -> bool:
        parts = host.split(".")
        return len(parts) >= 3 and parts[0] not in self.reserved_subdomains

    def _is_custom_domain(self, host: str) -> bool:
        return not any(host == domain or host.endswith("." + domain) for domain in self.main_domains)

"""
Tenant Resolution Middleware

Resolves the current tenant with TenantResolver (header, custom domain,
subdomain, then path) and attaches it to request.state for downstream
handlers. When ENABLE_MULTITENANCY is False this middleware is a no-op.

Starlette middleware is LIFO: this middleware is registered BEFORE
AuthMiddleware in create_app(), so it runs AFTER authentication and can
see request.state.user_id.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from lms_tenancy.config import settings
from lms_tenancy.models.tenant_usage import UsageAggregation
from lms_tenancy.services.tenant_resolver import TenantRequest, TenantResolver
from lms_tenancy.services.usage_service import (
    METRIC_API_CALLS,
    METRIC_BANDWIDTH,
    METRIC_RESPONSE_TIME,
    record_usage_metric,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastapi import Request
    from starlette.responses import Response
    from starlette.types import ASGIApp

logger = logging.getLogger(__name__)


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Resolve the current tenant and attach it to request.state.

    Attributes set on request.state:
        tenant          (Tenant | None)
        tenant_id       (str | None)
        tenant_context  (TenantContext | None): tenant plus the caller's role, if a member
    """

    def __init__(self, app: ASGIApp, resolver: TenantResolver | None = None):
        super().__init__(app)
        self.resolver = resolver or TenantResolver()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Always initialise state so downstream code can safely read without AttributeError
        request.state.tenant = None
        request.state.tenant_id = None
        request.state.tenant_context = None

        if not settings.enable_multitenancy:
            return await call_next(request)

        tenant_request = TenantRequest.from_request(request)
        if not self.resolver.is_tenant_request(tenant_request):
            return await call_next(request)

        # Deferred import so tests can swap the session factory
        from lms_tenancy import database

        async with database.AsyncSessionLocal() as db:
            context = await self.resolver.resolve_tenant_context(tenant_request, db)

        if context is not None:
            request.state.tenant = context.tenant
            request.state.tenant_id = context.tenant.id
            request.state.tenant_context = context
            logger.debug("TenantMiddleware: resolved tenant_id=%s", context.tenant.id)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        if context is not None:
            response.headers["X-Tenant-ID"] = context.tenant.id
            response.headers["X-Tenant-Name"] = context.tenant.name
            if settings.record_api_usage:
                await self._record_api_usage(context.tenant.id, elapsed_ms, response.headers.get("content-length"))

        return response

    async def _record_api_usage(self, tenant_id: str, elapsed_ms: float, content_length: str | None) -> None:
        """Add this request to the day's api_calls, response_time and bandwidth totals."""
        from lms_tenancy import database

        readings = [(METRIC_API_CALLS, 1, "count"), (METRIC_RESPONSE_TIME, round(elapsed_ms, 3), "ms")]
        if content_length and content_length.isdigit():
            readings.append((METRIC_BANDWIDTH, int(content_length), "bytes"))

        try:
            async with database.AsyncSessionLocal() as db:
                for metric_type, value, unit in readings:
                    await record_usage_metric(
                        tenant_id, metric_type, value, db, unit=unit, aggregation=UsageAggregation.ACCUMULATE
                    )
        except Exception as e:
            logger.warning("Failed to record API usage for tenant %s: %s", tenant_id, e)

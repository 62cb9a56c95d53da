"""
Tests for middleware modules

Tests tenant resolution on live requests, API usage recording, bearer
token handling and structured request logging.
"""

import json
import logging
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from lms_tenancy.config import settings
from lms_tenancy.middleware import AuthMiddleware, StructuredLoggingMiddleware, TenantMiddleware
from lms_tenancy.middleware import tenant as tenant_middleware
from lms_tenancy.middleware.logging import StructuredFormatter
from lms_tenancy.services.tenant_service import suspend_tenant
from lms_tenancy.services.usage_service import get_tenant_usage


def build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/whoami")
    async def whoami(request: Request):
        context = request.state.tenant_context
        return {
            "tenant_id": request.state.tenant_id,
            "user_id": request.state.user_id,
            "role": context.user_role if context else None,
        }

    app.add_middleware(TenantMiddleware)
    app.add_middleware(AuthMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)
    return app


@pytest.fixture
def app(session_factory):
    return build_app()


def client_for(app: FastAPI, host: str) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url=f"http://{host}")


async def _usage_metric(db, tenant_id, metric_type):
    for metric in await get_tenant_usage(tenant_id, db):
        if metric.metric_type == metric_type:
            await db.refresh(metric)
            return metric
    return None


async def _api_calls(db, tenant_id) -> float | None:
    metric = await _usage_metric(db, tenant_id, "api_calls")
    return metric.value if metric else None


class TestTenantMiddleware:
    """Tenant resolution on requests"""

    async def test_tenant_resolved_from_subdomain(self, app, active_tenant):
        async with client_for(app, "acme.example.com") as client:
            response = await client.get("/whoami")

        assert response.status_code == 200
        assert response.json()["tenant_id"] == active_tenant.id
        assert response.headers["X-Tenant-ID"] == active_tenant.id
        assert response.headers["X-Tenant-Name"] == "Acme"

    async def test_member_role_attached(self, app, active_tenant, owner, auth_headers):
        async with client_for(app, "acme.example.com") as client:
            response = await client.get("/whoami", headers=auth_headers(owner.id))

        body = response.json()
        assert body["user_id"] == owner.id
        assert body["role"] == "owner"

    async def test_tenant_resolved_from_header(self, app, active_tenant):
        async with client_for(app, "localhost") as client:
            response = await client.get("/whoami", headers={"X-Tenant-ID": active_tenant.id})

        assert response.json()["tenant_id"] == active_tenant.id

    async def test_non_tenant_request_untouched(self, app, active_tenant):
        async with client_for(app, "example.com") as client:
            response = await client.get("/whoami")

        assert response.json()["tenant_id"] is None
        assert "X-Tenant-ID" not in response.headers

    async def test_suspended_tenant_not_attached(self, app, db, active_tenant):
        await suspend_tenant(active_tenant.id, "Payment overdue", db)

        async with client_for(app, "acme.example.com") as client:
            response = await client.get("/whoami")

        assert response.json()["tenant_id"] is None
        assert "X-Tenant-ID" not in response.headers

    async def test_disabled_multitenancy(self, app, active_tenant, monkeypatch):
        monkeypatch.setattr(settings, "enable_multitenancy", False)

        async with client_for(app, "acme.example.com") as client:
            response = await client.get("/whoami")

        assert response.json()["tenant_id"] is None


class TestApiUsageRecording:
    async def test_each_request_counted(self, app, db, active_tenant):
        async with client_for(app, "acme.example.com") as client:
            for _ in range(3):
                await client.get("/whoami")

        assert await _api_calls(db, active_tenant.id) == 3

    async def test_response_time_and_bandwidth_accumulated(self, app, db, active_tenant):
        sizes = []
        async with client_for(app, "acme.example.com") as client:
            for _ in range(2):
                response = await client.get("/whoami")
                sizes.append(int(response.headers["content-length"]))

        response_time = await _usage_metric(db, active_tenant.id, "response_time")
        assert response_time.unit == "ms"
        assert response_time.value > 0

        bandwidth = await _usage_metric(db, active_tenant.id, "bandwidth")
        assert bandwidth.unit == "bytes"
        assert bandwidth.value == sum(sizes)

    async def test_recording_can_be_disabled(self, app, db, active_tenant, monkeypatch):
        monkeypatch.setattr(settings, "record_api_usage", False)

        async with client_for(app, "acme.example.com") as client:
            await client.get("/whoami")

        assert await _api_calls(db, active_tenant.id) is None

    async def test_recording_failure_does_not_fail_request(self, app, active_tenant, monkeypatch):
        monkeypatch.setattr(
            tenant_middleware, "record_usage_metric", AsyncMock(side_effect=RuntimeError("usage store down"))
        )

        async with client_for(app, "acme.example.com") as client:
            response = await client.get("/whoami")

        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == active_tenant.id


class TestAuthMiddleware:
    async def test_valid_token_sets_user(self, app, auth_headers):
        async with client_for(app, "example.com") as client:
            response = await client.get("/whoami", headers=auth_headers("user-123"))

        assert response.json()["user_id"] == "user-123"

    @pytest.mark.parametrize(
        "authorization",
        ["Bearer not-a-jwt", "Basic dXNlcjpwYXNz", "Bearer", ""],
    )
    async def test_unusable_tokens_leave_user_anonymous(self, app, authorization):
        async with client_for(app, "example.com") as client:
            response = await client.get("/whoami", headers={"Authorization": authorization})

        assert response.status_code == 200
        assert response.json()["user_id"] is None


class TestStructuredLogging:
    async def test_access_log_carries_tenant_and_user(self, app, active_tenant, owner, auth_headers, caplog):
        caplog.set_level(logging.INFO, logger="lms_tenancy.access")

        async with client_for(app, "acme.example.com") as client:
            response = await client.get("/whoami", headers=auth_headers(owner.id))

        records = [r for r in caplog.records if r.name == "lms_tenancy.access"]
        assert len(records) == 1
        assert records[0].tenant_id == active_tenant.id
        assert records[0].user_id == owner.id
        assert records[0].status_code == 200
        assert response.headers["X-Request-ID"]

    async def test_request_id_is_echoed(self, app):
        async with client_for(app, "example.com") as client:
            response = await client.get("/whoami", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_formatter_emits_json_with_extra_fields(self):
        record = logging.LogRecord("lms_tenancy.access", logging.INFO, __file__, 1, "GET /x - 200", None, None)
        record.tenant_id = "t1"
        record.status_code = 200

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "GET /x - 200"
        assert data["level"] == "INFO"
        assert data["tenant_id"] == "t1"
        assert data["status_code"] == 200
        assert "user_id" not in data

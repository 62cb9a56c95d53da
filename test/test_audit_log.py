"""
Tests for the tenant audit trail

Tests both audit modes: transactional rows that commit or roll back with
the mutation, and detached rows written after commit.
"""

from datetime import datetime
from enum import Enum

import pytest
from sqlalchemy import func, select

from lms_tenancy.config import settings
from lms_tenancy.models import Tenant, TenantAuditLog
from lms_tenancy.services.tenant_service import suspend_tenant, update_tenant
from lms_tenancy.utils import audit_log
from lms_tenancy.utils.audit_log import snapshot, to_jsonable
from lms_tenancy.utils.transactions import unit_of_work


class Color(str, Enum):
    RED = "red"


async def _audit_actions(db) -> list[str]:
    result = await db.execute(select(TenantAuditLog.action).order_by(TenantAuditLog.created_at))
    return list(result.scalars().all())


class TestPayloads:
    def test_to_jsonable_stringifies(self):
        data = to_jsonable({"at": datetime(2024, 1, 2, 3, 4, 5), "color": Color.RED, "n": 1})
        assert data == {"at": "2024-01-02 03:04:05", "color": "red", "n": 1}

    def test_to_jsonable_none(self):
        assert to_jsonable(None) is None

    def test_snapshot_selected_fields(self):
        tenant = Tenant(name="Acme", subdomain="acme", status="active")
        assert snapshot(tenant, ["name", "status"]) == {"name": "Acme", "status": "active"}


class TestTransactionalMode:
    async def test_audit_row_committed_with_mutation(self, db, active_tenant):
        await suspend_tenant(active_tenant.id, "Payment overdue", db)

        assert await _audit_actions(db) == ["tenant.created", "tenant.suspended"]

    async def test_audit_failure_aborts_mutation(self, db, active_tenant, monkeypatch):
        def broken_to_jsonable(data):
            raise ValueError("Audit changes must be JSON-serialisable")

        monkeypatch.setattr(audit_log, "to_jsonable", broken_to_jsonable)

        with pytest.raises(ValueError):
            await update_tenant(active_tenant.id, {"name": "Renamed"}, db)

        name = await db.scalar(select(Tenant.name).where(Tenant.id == active_tenant.id))
        assert name == "Acme"
        assert await _audit_actions(db) == ["tenant.created"]


class TestDetachedMode:
    async def test_audit_written_after_commit(self, db, active_tenant, monkeypatch):
        monkeypatch.setattr(settings, "audit_mode", "detached")

        await suspend_tenant(active_tenant.id, "Payment overdue", db)

        assert await _audit_actions(db) == ["tenant.created", "tenant.suspended"]
        assert audit_log.PENDING_AUDIT_KEY not in db.info

    async def test_audit_failure_does_not_abort_mutation(self, db, active_tenant, monkeypatch):
        monkeypatch.setattr(settings, "audit_mode", "detached")

        class BrokenSession:
            async def __aenter__(self):
                raise RuntimeError("audit store unavailable")

            async def __aexit__(self, *exc):
                return False

        from lms_tenancy import database

        monkeypatch.setattr(database, "AsyncSessionLocal", lambda: BrokenSession())

        tenant = await suspend_tenant(active_tenant.id, "Payment overdue", db)

        assert tenant.status == "suspended"
        status = await db.scalar(select(Tenant.status).where(Tenant.id == active_tenant.id))
        assert status == "suspended"
        assert await _audit_actions(db) == ["tenant.created"]

    async def test_rolled_back_mutation_drops_staged_events(self, db, active_tenant, monkeypatch):
        monkeypatch.setattr(settings, "audit_mode", "detached")

        with pytest.raises(RuntimeError):
            async with unit_of_work(db):
                await audit_log.log_audit_event(db, active_tenant.id, "tenant.updated")
                assert len(db.info[audit_log.PENDING_AUDIT_KEY]) == 1
                raise RuntimeError("mutation failed")

        assert audit_log.PENDING_AUDIT_KEY not in db.info
        count = await db.scalar(select(func.count()).select_from(TenantAuditLog))
        assert count == 1

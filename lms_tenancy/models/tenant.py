"""
Tenant model.

Each Tenant is an isolated organisation (an LMS customer account).
Isolation is either shared tables filtered by tenant_id, a dedicated
schema, or a dedicated database; schema_name / database_name are only
set for the latter two.
"""

import enum
import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String, Text

from lms_tenancy.constants.plans import TenantPlan
from lms_tenancy.database import Base
from lms_tenancy.utils.dates import utc_now

__all__ = ["IsolationLevel", "Tenant", "TenantPlan", "TenantStatus"]


class TenantStatus(str, enum.Enum):
    trial = "trial"
    active = "active"
    suspended = "suspended"


class IsolationLevel(str, enum.Enum):
    shared = "shared"
    schema = "schema"
    database = "database"


# Allowed (from, to) status pairs
TENANT_STATUS_TRANSITIONS = {
    (TenantStatus.trial.value, TenantStatus.active.value),
    (TenantStatus.active.value, TenantStatus.suspended.value),
    (TenantStatus.suspended.value, TenantStatus.active.value),
}


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    subdomain = Column(String(100), nullable=False, unique=True)  # e.g. "acme" for acme.example.com
    domain = Column(String(253), nullable=True, unique=True)  # optional custom domain, e.g. "learn.acme.com"
    description = Column(Text, nullable=True)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    plan = Column(String(20), nullable=False, default=TenantPlan.FREE.value)
    isolation_level = Column(String(20), nullable=False, default=IsolationLevel.shared.value)
    status = Column(String(20), nullable=False, default=TenantStatus.trial.value)
    database_name = Column(String(100), nullable=True)
    schema_name = Column(String(100), nullable=True)

    features = Column(JSON, nullable=True)
    branding = Column(JSON, nullable=True)
    settings = Column(JSON, nullable=True)

    trial_ends_at = Column(DateTime, nullable=True)
    suspended_at = Column(DateTime, nullable=True)
    suspension_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)
    last_access_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_tenant_status", "status"),
        Index("idx_tenant_plan", "plan"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.active.value

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint

from lms_tenancy.database import Base
from lms_tenancy.utils.dates import utc_now


class TenantConfiguration(Base):
    """Per-tenant key/value setting grouped by category."""

    __tablename__ = "tenant_configurations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(100), nullable=False)  # e.g. "branding", "features", "integrations"
    key = Column(String(100), nullable=False)
    value = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=True)
    updated_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (UniqueConstraint("tenant_id", "category", "key", name="uq_tenant_configuration_key"),)

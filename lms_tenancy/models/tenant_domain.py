import enum
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String

from lms_tenancy.database import Base
from lms_tenancy.utils.dates import utc_now


class DomainType(str, enum.Enum):
    PRIMARY = "primary"
    ALIAS = "alias"
    REDIRECT = "redirect"


class TenantDomain(Base):
    """Custom domain attached to a tenant; verified through DNS records."""

    __tablename__ = "tenant_domains"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    domain = Column(String(253), nullable=False, unique=True)
    type = Column(String(20), nullable=False, default=DomainType.PRIMARY.value)

    is_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    ssl_enabled = Column(Boolean, nullable=False, default=False)
    ssl_expires_at = Column(DateTime, nullable=True)
    dns_records = Column(JSON, nullable=True)  # [{"type", "name", "value", "ttl", "verified"}]
    verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

import enum
import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String

from lms_tenancy.database import Base
from lms_tenancy.utils.dates import utc_now


class AuditLevel(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TenantAuditLog(Base):
    """Append-only record of a mutation performed on a tenant."""

    __tablename__ = "tenant_audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)  # e.g. "tenant.created", "user.invited"
    resource = Column(String(100), nullable=True)
    resource_id = Column(String(36), nullable=True)
    changes = Column(JSON, nullable=True)  # {"before": ..., "after": ...}
    metadata_ = Column("metadata", JSON, nullable=True)
    level = Column(String(20), nullable=False, default=AuditLevel.INFO.value)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_tenant_audit_action_created", "tenant_id", "action", "created_at"),
    )

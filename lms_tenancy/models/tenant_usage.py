import enum
import uuid

from sqlalchemy import JSON, Column, Date, DateTime, Float, ForeignKey, Index, String, UniqueConstraint

from lms_tenancy.database import Base
from lms_tenancy.utils.dates import utc_now


class UsageAggregation(str, enum.Enum):
    """How a new reading combines with the value already stored for the day."""

    REPLACE = "replace"  # point-in-time snapshot; the last reading of the day wins
    ACCUMULATE = "accumulate"  # running total for the day


class TenantUsageMetric(Base):
    __tablename__ = "tenant_usage_metrics"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    metric_type = Column(String(100), nullable=False)  # e.g. "active_users", "storage_used", "api_calls"
    value = Column(Float, nullable=False, default=0.0)
    unit = Column(String(20), nullable=True)
    date = Column(Date, nullable=False)
    granularity = Column(String(20), nullable=False, default="daily")
    # Use metadata_ as Python attr to avoid shadowing SQLAlchemy Base.metadata
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("tenant_id", "metric_type", "date", "granularity", name="uq_tenant_usage_metric_day"),
        Index("idx_tenant_usage_date", "date"),
    )

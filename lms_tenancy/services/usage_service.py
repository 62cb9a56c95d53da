"""
Usage Service

Daily usage metrics per tenant. Each (tenant, metric, day) has one row;
a new reading either replaces the stored value or is added to it,
depending on the UsageAggregation the caller asks for.
"""

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.models.tenant_usage import TenantUsageMetric, UsageAggregation
from lms_tenancy.utils.audit_log import to_jsonable
from lms_tenancy.utils.dates import utc_today
from lms_tenancy.utils.transactions import unit_of_work

logger = logging.getLogger(__name__)

DAILY = "daily"

METRIC_ACTIVE_USERS = "active_users"
METRIC_TOTAL_COURSES = "total_courses"
METRIC_STORAGE_USED = "storage_used"  # GB
METRIC_API_CALLS = "api_calls"
METRIC_RESPONSE_TIME = "response_time"  # ms, summed over the day
METRIC_BANDWIDTH = "bandwidth"  # response bytes, summed over the day

CURRENT_USAGE_METRICS = (METRIC_ACTIVE_USERS, METRIC_TOTAL_COURSES, METRIC_STORAGE_USED)


async def _apply_reading(
    tenant_id: str,
    metric_type: str,
    value: float,
    db: AsyncSession,
    unit: str | None,
    metadata: Any,
    aggregation: UsageAggregation,
) -> TenantUsageMetric:
    today = utc_today()
    result = await db.execute(
        select(TenantUsageMetric).where(
            TenantUsageMetric.tenant_id == tenant_id,
            TenantUsageMetric.metric_type == metric_type,
            TenantUsageMetric.date == today,
            TenantUsageMetric.granularity == DAILY,
        )
    )
    metric = result.scalars().first()

    if metric is None:
        metric = TenantUsageMetric(
            tenant_id=tenant_id,
            metric_type=metric_type,
            value=float(value),
            unit=unit,
            date=today,
            granularity=DAILY,
            metadata_=metadata,
        )
        db.add(metric)
        await db.flush()
        return metric

    if aggregation == UsageAggregation.ACCUMULATE:
        # Increment in SQL so concurrent writers do not lose updates
        values: dict = {TenantUsageMetric.value: TenantUsageMetric.value + float(value)}
        if metadata is not None:
            values[TenantUsageMetric.metadata_] = metadata
        await db.execute(
            update(TenantUsageMetric)
            .where(TenantUsageMetric.id == metric.id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
    else:
        metric.value = float(value)
        metric.metadata_ = metadata
    if unit is not None:
        metric.unit = unit
    await db.flush()
    return metric


async def record_usage_metric(
    tenant_id: str,
    metric_type: str,
    value: float,
    db: AsyncSession,
    unit: str | None = None,
    metadata: dict | None = None,
    aggregation: UsageAggregation = UsageAggregation.REPLACE,
) -> TenantUsageMetric:
    """
    Record a reading for today's bucket of a tenant metric.

    REPLACE stores a point-in-time snapshot (the last reading of the day
    wins); ACCUMULATE adds the reading to the day's running total. Two
    writers creating the same day's row race on the unique constraint; the
    loser retries once against the row the winner inserted.
    """
    aggregation = UsageAggregation(aggregation)
    metadata = to_jsonable(metadata)

    for attempt in (1, 2):
        try:
            async with unit_of_work(db):
                metric = await _apply_reading(tenant_id, metric_type, value, db, unit, metadata, aggregation)
            break
        except IntegrityError:
            if attempt == 2:
                raise
            logger.debug("Usage row for %s/%s created concurrently, retrying", tenant_id, metric_type)

    await db.refresh(metric)
    return metric


async def get_tenant_usage(tenant_id: str, db: AsyncSession, days: int = 30) -> list[TenantUsageMetric]:
    """Return the tenant's metrics for the last `days` days, newest first."""
    start = utc_today() - timedelta(days=days)
    result = await db.execute(
        select(TenantUsageMetric)
        .where(TenantUsageMetric.tenant_id == tenant_id, TenantUsageMetric.date >= start)
        .order_by(TenantUsageMetric.date.desc(), TenantUsageMetric.metric_type)
    )
    return list(result.scalars().all())


async def get_current_usage(tenant_id: str, db: AsyncSession) -> dict[str, float]:
    """Today's values for the metrics that plan limits are checked against."""
    result = await db.execute(
        select(TenantUsageMetric.metric_type, TenantUsageMetric.value).where(
            TenantUsageMetric.tenant_id == tenant_id,
            TenantUsageMetric.date == utc_today(),
            TenantUsageMetric.granularity == DAILY,
            TenantUsageMetric.metric_type.in_(CURRENT_USAGE_METRICS),
        )
    )
    current = {name: 0.0 for name in CURRENT_USAGE_METRICS}
    for metric_type, value in result.all():
        current[metric_type] = value
    return current

"""Per-tenant key/value configuration grouped by category."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.exceptions import DuplicateResourceError
from lms_tenancy.models.tenant_configuration import TenantConfiguration
from lms_tenancy.services.tenant_service import get_tenant_by_id
from lms_tenancy.utils.audit_log import log_audit_event, to_jsonable
from lms_tenancy.utils.transactions import unit_of_work

logger = logging.getLogger(__name__)


async def get_tenant_configuration(
    tenant_id: str,
    db: AsyncSession,
    category: str | None = None,
) -> list[TenantConfiguration]:
    """Return active configuration rows ordered by category, then key."""
    query = select(TenantConfiguration).where(
        TenantConfiguration.tenant_id == tenant_id,
        TenantConfiguration.is_active.is_(True),
    )
    if category:
        query = query.where(TenantConfiguration.category == category)
    result = await db.execute(query.order_by(TenantConfiguration.category, TenantConfiguration.key))
    return list(result.scalars().all())


async def get_configuration_map(
    tenant_id: str,
    db: AsyncSession,
    category: str | None = None,
) -> dict[str, dict[str, Any]]:
    """Return configuration as {category: {key: value}}."""
    config_map: dict[str, dict[str, Any]] = {}
    for config in await get_tenant_configuration(tenant_id, db, category=category):
        config_map.setdefault(config.category, {})[config.key] = config.value
    return config_map


async def set_tenant_configuration(
    tenant_id: str,
    category: str,
    key: str,
    value: Any,
    db: AsyncSession,
    updated_by: str | None = None,
    description: str | None = None,
) -> TenantConfiguration:
    """Insert or update the value stored under (tenant, category, key)."""
    value = to_jsonable(value)

    async with unit_of_work(db):
        await get_tenant_by_id(tenant_id, db)

        result = await db.execute(
            select(TenantConfiguration).where(
                TenantConfiguration.tenant_id == tenant_id,
                TenantConfiguration.category == category,
                TenantConfiguration.key == key,
            )
        )
        config = result.scalars().first()
        before = None

        if config is not None:
            before = {"value": config.value}
            config.value = value
            config.updated_by = updated_by
            config.is_active = True
            if description is not None:
                config.description = description
        else:
            config = TenantConfiguration(
                tenant_id=tenant_id,
                category=category,
                key=key,
                value=value,
                description=description,
                updated_by=updated_by,
            )
            db.add(config)

        try:
            await db.flush()
        except IntegrityError as e:
            raise DuplicateResourceError("TenantConfiguration", "key", f"{category}.{key}") from e

        await log_audit_event(
            db,
            tenant_id,
            "configuration.updated",
            user_id=updated_by,
            resource="tenant_configuration",
            resource_id=config.id,
            changes={"before": before, "after": {"category": category, "key": key, "value": value}},
        )

    logger.info("Configuration set for tenant %s: %s.%s", tenant_id, category, key)
    return config

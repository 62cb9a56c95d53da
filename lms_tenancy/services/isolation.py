"""
Tenant isolation provisioning.

Shared tenants need nothing. Schema- and database-isolated tenants get a
dedicated store whose name is derived from the subdomain (and tenant id
for databases) and written back onto the tenant row.
"""

import logging
import re

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.exceptions import ProvisioningError
from lms_tenancy.models.tenant import IsolationLevel, Tenant

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


def schema_name_for(tenant: Tenant) -> str:
    return f"tenant_{tenant.subdomain}".replace("-", "_").lower()


def database_name_for(tenant: Tenant) -> str:
    name = f"tenant_{tenant.subdomain}_{tenant.id}".replace("-", "_").lower()
    return name[:63]


def _checked_identifier(name: str, isolation_level: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise ProvisioningError(f"Invalid identifier for tenant store: '{name}'", isolation_level=isolation_level)
    return name


class TenantProvisioner:
    """Creates the dedicated schema or database a tenant's isolation level requires."""

    async def provision(self, tenant: Tenant, db: AsyncSession) -> None:
        level = tenant.isolation_level
        if level == IsolationLevel.schema.value:
            name = _checked_identifier(schema_name_for(tenant), level)
            await self._execute(db, f'CREATE SCHEMA "{name}"', level)
            tenant.schema_name = name
        elif level == IsolationLevel.database.value:
            # Most engines refuse CREATE DATABASE inside a transaction and never roll it back
            name = _checked_identifier(database_name_for(tenant), level)
            await self._execute(db, f'CREATE DATABASE "{name}"', level)
            tenant.database_name = name
        else:
            return
        logger.info("Provisioned %s isolation for tenant %s", level, tenant.id)

    async def _execute(self, db: AsyncSession, statement: str, level: str) -> None:
        try:
            await db.execute(text(statement))
        except Exception as e:
            logger.error("Provisioning statement failed (%s): %s", statement, e)
            raise ProvisioningError(str(e), isolation_level=level) from e


default_provisioner = TenantProvisioner()

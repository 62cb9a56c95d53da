"""
Tenant audit trail.

In "transactional" mode an audit row is added to the caller's session and
commits or rolls back together with the mutation it describes; a failure
to write it aborts the mutation. In "detached" mode rows are staged on the
session and written after the unit of work commits, in a separate session,
and write failures are only logged.
"""

import json
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.config import settings
from lms_tenancy.models.tenant_audit_log import AuditLevel, TenantAuditLog

logger = logging.getLogger(__name__)

PENDING_AUDIT_KEY = "pending_audit_events"


def to_jsonable(data: Any) -> Any:
    """
    Coerce audit payloads into JSON-safe values.

    Datetimes, enums and other non-JSON values are stringified.
    """
    if data is None:
        return None
    try:
        return json.loads(json.dumps(data, default=str))
    except (TypeError, ValueError) as e:
        logger.error("Audit payload is not serialisable: %r", data)
        raise ValueError(f"Audit changes must be JSON-serialisable. Error: {e}") from e


def snapshot(instance: Any, fields: list[str] | None = None) -> dict[str, Any]:
    """Plain dict of an ORM row's column values, for before/after diffs."""
    columns = fields or [c.key for c in instance.__mapper__.column_attrs]
    return to_jsonable({name: getattr(instance, name) for name in columns})


async def log_audit_event(
    db: AsyncSession,
    tenant_id: str,
    action: str,
    user_id: str | None = None,
    resource: str | None = None,
    resource_id: str | None = None,
    changes: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    level: AuditLevel = AuditLevel.INFO,
) -> None:
    """Record an audit event for a tenant mutation."""
    payload = {
        "tenant_id": tenant_id,
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "resource_id": resource_id,
        "changes": to_jsonable(changes),
        "metadata_": to_jsonable(metadata),
        "level": level.value if isinstance(level, AuditLevel) else level,
    }

    if settings.audit_mode == "detached":
        db.info.setdefault(PENDING_AUDIT_KEY, []).append(payload)
        return

    db.add(TenantAuditLog(**payload))
    await db.flush()


def discard_pending_audit_events(db: AsyncSession) -> None:
    db.info.pop(PENDING_AUDIT_KEY, None)


async def flush_pending_audit_events(db: AsyncSession) -> int:
    """
    Write staged audit events in a separate session.

    Returns the number of events written; failures are logged and dropped.
    """
    pending = db.info.pop(PENDING_AUDIT_KEY, None)
    if not pending:
        return 0

    # Deferred import so tests can swap the session factory
    from lms_tenancy import database

    try:
        async with database.AsyncSessionLocal() as session:
            session.add_all([TenantAuditLog(**payload) for payload in pending])
            await session.commit()
    except Exception as e:
        logger.error("Failed to write %d audit event(s): %s", len(pending), e)
        return 0
    return len(pending)

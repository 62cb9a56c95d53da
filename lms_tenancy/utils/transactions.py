import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.utils.audit_log import discard_pending_audit_events, flush_pending_audit_events

logger = logging.getLogger(__name__)


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Commit everything done inside the block, or roll all of it back.

    DDL issued inside the block (CREATE SCHEMA / CREATE DATABASE) is only
    rolled back on engines with transactional DDL.
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        discard_pending_audit_events(db)
        raise
    await flush_pending_audit_events(db)

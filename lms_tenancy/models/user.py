import uuid

from sqlalchemy import Boolean, Column, DateTime, String

from lms_tenancy.database import Base
from lms_tenancy.utils.dates import utc_now


class User(Base):
    """Platform identity referenced by tenant owners, members and inviters."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), unique=True, nullable=False, index=True)
    username = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

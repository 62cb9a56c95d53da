"""Tenant membership and invitation models."""

import enum
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, text

from lms_tenancy.constants.roles import TenantRole
from lms_tenancy.database import Base
from lms_tenancy.utils.dates import utc_now


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"  # terminal; set when an accept is attempted past expires_at


class TenantUser(Base):
    """Membership of a user in a tenant, with a role and explicit permissions."""

    __tablename__ = "tenant_users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default=TenantRole.STUDENT.value)
    permissions = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    invited_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    joined_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_tenant_user"),
        # Exactly one owner per tenant
        Index(
            "uq_tenant_single_owner",
            "tenant_id",
            unique=True,
            postgresql_where=text("role = 'owner'"),
            sqlite_where=text("role = 'owner'"),
        ),
        Index("idx_tenant_user_role", "role"),
    )


class TenantInvitation(Base):
    """Pending or accepted invitation to join a tenant."""

    __tablename__ = "tenant_invitations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(320), nullable=False, index=True)
    role = Column(String(20), nullable=False, default=TenantRole.STUDENT.value)
    permissions = Column(JSON, nullable=False, default=list)
    token = Column(String(128), nullable=False, unique=True)
    invited_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    message = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=InvitationStatus.PENDING.value)

    expires_at = Column(DateTime, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    accepted_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        # At most one pending invitation per (tenant, email)
        Index(
            "uq_tenant_invitation_pending_email",
            "tenant_id",
            "email",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_tenant_invitation_expires", "expires_at"),
    )

"""
Membership Service

Tenant members and invitations. Every tenant has exactly one owner; the
owner cannot be removed or demoted, and no other member can be promoted
to owner through these operations.
"""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tenancy.config import settings
from lms_tenancy.constants.roles import TENANT_ROLE_HIERARCHY, TenantRole, get_default_permissions
from lms_tenancy.exceptions import (
    DuplicateResourceError,
    InvalidOperationError,
    InvitationExpiredError,
    InvitationNotFoundError,
    OwnerProtectedError,
    TenantMemberNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from lms_tenancy.models.tenant_user import InvitationStatus, TenantInvitation, TenantUser
from lms_tenancy.models.user import User
from lms_tenancy.services.tenant_service import get_tenant_by_id
from lms_tenancy.utils.audit_log import log_audit_event
from lms_tenancy.utils.dates import utc_now
from lms_tenancy.utils.transactions import unit_of_work

logger = logging.getLogger(__name__)


def _validate_role(role: str) -> str:
    if role not in TENANT_ROLE_HIERARCHY:
        raise ValidationError(f"Unknown tenant role: '{role}'", field="role")
    return role


async def get_tenant_users(
    tenant_id: str,
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[TenantUser], int]:
    """Return one page of active members, newest first, and the total member count."""
    page = max(page, 1)
    filters = (TenantUser.tenant_id == tenant_id, TenantUser.is_active.is_(True))

    total = await db.scalar(select(func.count()).select_from(TenantUser).where(*filters))
    result = await db.execute(
        select(TenantUser)
        .where(*filters)
        .order_by(TenantUser.joined_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def get_tenant_member(tenant_id: str, user_id: str, db: AsyncSession) -> TenantUser | None:
    """Return a user's membership row in a tenant, active or not, or None."""
    result = await db.execute(
        select(TenantUser).where(TenantUser.tenant_id == tenant_id, TenantUser.user_id == user_id)
    )
    return result.scalars().first()


async def _has_pending_invitation(tenant_id: str, email: str, db: AsyncSession) -> bool:
    result = await db.execute(
        select(TenantInvitation.id).where(
            TenantInvitation.tenant_id == tenant_id,
            TenantInvitation.email == email,
            TenantInvitation.status == InvitationStatus.PENDING.value,
        )
    )
    return result.first() is not None


async def invite_user(
    tenant_id: str,
    inviter_user_id: str,
    email: str,
    db: AsyncSession,
    role: str = TenantRole.STUDENT.value,
    permissions: list[str] | None = None,
    message: str | None = None,
    expires_in_days: int | None = None,
) -> TenantInvitation:
    """
    Invite an email address to join a tenant.

    Rejected if the address already belongs to a member or already has a
    pending invitation. Permissions default to the role's default set.
    """
    email = email.strip().lower()
    role = _validate_role(role)
    if role == TenantRole.OWNER.value:
        raise InvalidOperationError("Cannot invite a user as tenant owner")

    async with unit_of_work(db):
        await get_tenant_by_id(tenant_id, db)

        member = await db.execute(
            select(TenantUser.id)
            .join(User, User.id == TenantUser.user_id)
            .where(TenantUser.tenant_id == tenant_id, func.lower(User.email) == email)
        )
        if member.first() is not None:
            raise DuplicateResourceError(
                "TenantUser", "email", email, message="User is already a member of this tenant"
            )

        if await _has_pending_invitation(tenant_id, email, db):
            raise DuplicateResourceError(
                "TenantInvitation", "email", email, message="User already has a pending invitation"
            )

        invitation = TenantInvitation(
            tenant_id=tenant_id,
            email=email,
            role=role,
            permissions=permissions if permissions is not None else get_default_permissions(role),
            token=secrets.token_hex(32),
            invited_by=inviter_user_id,
            message=message,
            status=InvitationStatus.PENDING.value,
            expires_at=utc_now() + timedelta(days=expires_in_days or settings.invitation_expiry_days),
        )
        db.add(invitation)
        try:
            await db.flush()
        except IntegrityError as e:
            raise DuplicateResourceError(
                "TenantInvitation", "email", email, message="User already has a pending invitation"
            ) from e

        await log_audit_event(
            db,
            tenant_id,
            "user.invited",
            user_id=inviter_user_id,
            resource="invitation",
            resource_id=invitation.id,
            changes={"before": None, "after": {"email": email, "role": role}},
        )

    logger.info("User invited to tenant %s: %s as %s", tenant_id, email, role)
    return invitation


async def accept_invitation(token: str, user_id: str, db: AsyncSession) -> TenantUser:
    """
    Accept a pending invitation and create the membership it describes.

    An invitation is accepted at most once: the pending -> accepted flip is a
    conditional update, so a second or concurrent accept finds nothing to
    claim and raises InvitationNotFoundError. An expired invitation is marked
    expired and rejected.
    """
    result = await db.execute(
        select(TenantInvitation).where(
            TenantInvitation.token == token,
            TenantInvitation.status == InvitationStatus.PENDING.value,
        )
    )
    invitation = result.scalars().first()
    if invitation is None:
        raise InvitationNotFoundError()

    if invitation.expires_at < utc_now():
        async with unit_of_work(db):
            invitation.status = InvitationStatus.EXPIRED.value
        logger.info("Invitation %s expired before acceptance", invitation.id)
        raise InvitationExpiredError()

    async with unit_of_work(db):
        if await db.get(User, user_id) is None:
            raise UserNotFoundError(user_id)

        now = utc_now()
        claimed = await db.execute(
            update(TenantInvitation)
            .where(
                TenantInvitation.id == invitation.id,
                TenantInvitation.status == InvitationStatus.PENDING.value,
            )
            .values(status=InvitationStatus.ACCEPTED.value, accepted_at=now, accepted_by=user_id)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise InvitationNotFoundError()

        tenant_user = TenantUser(
            tenant_id=invitation.tenant_id,
            user_id=user_id,
            role=invitation.role,
            permissions=list(invitation.permissions or []),
            invited_by=invitation.invited_by,
        )
        db.add(tenant_user)
        try:
            await db.flush()
        except IntegrityError as e:
            if invitation.role == TenantRole.OWNER.value:
                raise InvalidOperationError(
                    "A tenant can only have one owner", details={"tenant_id": invitation.tenant_id}
                ) from e
            raise DuplicateResourceError(
                "TenantUser", "user_id", user_id, message="User is already a member of this tenant"
            ) from e

        await log_audit_event(
            db,
            invitation.tenant_id,
            "invitation.accepted",
            user_id=user_id,
            resource="invitation",
            resource_id=invitation.id,
            changes={
                "before": {"status": InvitationStatus.PENDING.value},
                "after": {"status": InvitationStatus.ACCEPTED.value},
            },
        )

    await db.refresh(invitation)
    logger.info("Invitation %s accepted by user %s", invitation.id, user_id)
    return tenant_user


async def list_invitations(
    tenant_id: str,
    db: AsyncSession,
    status: str | None = None,
) -> list[TenantInvitation]:
    query = select(TenantInvitation).where(TenantInvitation.tenant_id == tenant_id)
    if status:
        query = query.where(TenantInvitation.status == status)
    result = await db.execute(query.order_by(TenantInvitation.created_at.desc()))
    return list(result.scalars().all())


async def update_user_role(
    tenant_id: str,
    user_id: str,
    new_role: str,
    db: AsyncSession,
    permissions: list[str] | None = None,
    updated_by: str | None = None,
) -> TenantUser:
    """
    Change a member's role and permissions.

    Permissions default to the new role's default set. The owner cannot be
    demoted and nobody can be promoted to owner here.
    """
    new_role = _validate_role(new_role)

    async with unit_of_work(db):
        tenant_user = await get_tenant_member(tenant_id, user_id, db)
        if tenant_user is None:
            raise TenantMemberNotFoundError(user_id)

        if tenant_user.role == TenantRole.OWNER.value:
            if new_role != TenantRole.OWNER.value:
                raise OwnerProtectedError("Cannot change the role of the tenant owner", tenant_id=tenant_id)
        elif new_role == TenantRole.OWNER.value:
            raise InvalidOperationError("A tenant can only have one owner", details={"tenant_id": tenant_id})

        before = {"role": tenant_user.role, "permissions": tenant_user.permissions}
        tenant_user.role = new_role
        tenant_user.permissions = permissions if permissions is not None else get_default_permissions(new_role)

        await log_audit_event(
            db,
            tenant_id,
            "user.role_updated",
            user_id=updated_by,
            resource="tenant_user",
            resource_id=tenant_user.id,
            changes={"before": before, "after": {"role": new_role, "permissions": tenant_user.permissions}},
        )

    logger.info("User role updated in tenant %s: %s -> %s", tenant_id, user_id, new_role)
    return tenant_user


async def remove_user_from_tenant(
    tenant_id: str,
    user_id: str,
    db: AsyncSession,
    removed_by: str | None = None,
) -> None:
    """Delete a membership. Removing the owner always raises OwnerProtectedError."""
    async with unit_of_work(db):
        tenant_user = await get_tenant_member(tenant_id, user_id, db)
        if tenant_user is None:
            raise TenantMemberNotFoundError(user_id)

        if tenant_user.role == TenantRole.OWNER.value:
            raise OwnerProtectedError(tenant_id=tenant_id)

        membership_id = tenant_user.id
        role = tenant_user.role
        await db.delete(tenant_user)
        await db.flush()

        await log_audit_event(
            db,
            tenant_id,
            "user.removed",
            user_id=removed_by,
            resource="tenant_user",
            resource_id=membership_id,
            changes={"before": {"user_id": user_id, "role": role}, "after": None},
        )

    logger.info("User removed from tenant %s: %s", tenant_id, user_id)

"""
Tests for membership service

Tests invitations, acceptance, role changes, removal and the owner
protection rules.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from lms_tenancy.constants.roles import DEFAULT_PERMISSIONS_BY_ROLE
from lms_tenancy.exceptions import (
    DuplicateResourceError,
    InvalidOperationError,
    InvitationExpiredError,
    InvitationNotFoundError,
    OwnerProtectedError,
    TenantMemberNotFoundError,
    TenantNotFoundError,
    ValidationError,
)
from lms_tenancy.models import TenantAuditLog, TenantInvitation, TenantUser
from lms_tenancy.services import membership_service
from lms_tenancy.services.membership_service import (
    accept_invitation,
    get_tenant_member,
    get_tenant_users,
    invite_user,
    list_invitations,
    remove_user_from_tenant,
    update_user_role,
)
from lms_tenancy.utils.dates import utc_now


@pytest.fixture
async def bob(make_user):
    return await make_user("bob@x.com", "bob")


@pytest.fixture
async def bob_member(db, active_tenant, owner, bob):
    """Bob joined as a teacher through an accepted invitation."""
    invitation = await invite_user(active_tenant.id, owner.id, "bob@x.com", db, role="teacher")
    return await accept_invitation(invitation.token, bob.id, db)


class TestInviteUser:
    async def test_invitation_created_pending(self, db, active_tenant, owner):
        invitation = await invite_user(active_tenant.id, owner.id, "Bob@X.com", db, role="teacher")

        assert invitation.email == "bob@x.com"
        assert invitation.status == "pending"
        assert invitation.role == "teacher"
        assert invitation.permissions == DEFAULT_PERMISSIONS_BY_ROLE["teacher"]
        assert len(invitation.token) == 64
        assert abs(invitation.expires_at - (utc_now() + timedelta(days=7))) < timedelta(minutes=1)

    async def test_explicit_permissions_kept(self, db, active_tenant, owner):
        invitation = await invite_user(
            active_tenant.id, owner.id, "bob@x.com", db, role="student", permissions=["courses.view"]
        )
        assert invitation.permissions == ["courses.view"]

    async def test_invite_is_audited(self, db, active_tenant, owner):
        invitation = await invite_user(active_tenant.id, owner.id, "bob@x.com", db)

        audit = (
            await db.execute(select(TenantAuditLog).where(TenantAuditLog.action == "user.invited"))
        ).scalars().one()
        assert audit.resource_id == invitation.id
        assert audit.user_id == owner.id

    async def test_second_pending_invite_rejected(self, db, active_tenant, owner):
        await invite_user(active_tenant.id, owner.id, "bob@x.com", db)

        with pytest.raises(DuplicateResourceError):
            await invite_user(active_tenant.id, owner.id, "BOB@x.com", db, role="teacher")

        count = await db.scalar(select(func.count()).select_from(TenantInvitation))
        assert count == 1

    async def test_pending_index_rejects_duplicate_when_precheck_misses(self, db, active_tenant, owner, monkeypatch):
        await invite_user(active_tenant.id, owner.id, "bob@x.com", db)
        monkeypatch.setattr(membership_service, "_has_pending_invitation", AsyncMock(return_value=False))

        with pytest.raises(DuplicateResourceError) as exc_info:
            await invite_user(active_tenant.id, owner.id, "bob@x.com", db, role="teacher")

        assert exc_info.value.message == "User already has a pending invitation"
        pending = await db.scalar(
            select(func.count()).select_from(TenantInvitation).where(TenantInvitation.status == "pending")
        )
        assert pending == 1

    async def test_existing_member_cannot_be_invited(self, db, active_tenant, owner, bob_member):
        with pytest.raises(DuplicateResourceError) as exc_info:
            await invite_user(active_tenant.id, owner.id, "bob@x.com", db)

        assert "already a member" in exc_info.value.message

    async def test_owner_role_cannot_be_invited(self, db, active_tenant, owner):
        with pytest.raises(InvalidOperationError):
            await invite_user(active_tenant.id, owner.id, "bob@x.com", db, role="owner")

    async def test_unknown_role_rejected(self, db, active_tenant, owner):
        with pytest.raises(ValidationError):
            await invite_user(active_tenant.id, owner.id, "bob@x.com", db, role="superuser")

    async def test_unknown_tenant(self, db, owner):
        with pytest.raises(TenantNotFoundError):
            await invite_user("missing", owner.id, "bob@x.com", db)


class TestAcceptInvitation:
    async def test_accept_creates_membership(self, db, active_tenant, owner, bob):
        invitation = await invite_user(active_tenant.id, owner.id, "bob@x.com", db, role="teacher")

        member = await accept_invitation(invitation.token, bob.id, db)

        assert member.tenant_id == active_tenant.id
        assert member.user_id == bob.id
        assert member.role == "teacher"
        assert member.permissions == DEFAULT_PERMISSIONS_BY_ROLE["teacher"]
        assert member.invited_by == owner.id
        assert member.is_active is True

        assert invitation.status == "accepted"
        assert invitation.accepted_by == bob.id
        assert invitation.accepted_at is not None

    async def test_invitation_is_single_use(self, db, active_tenant, owner, bob, make_user):
        invitation = await invite_user(active_tenant.id, owner.id, "bob@x.com", db, role="teacher")
        await accept_invitation(invitation.token, bob.id, db)
        carol = await make_user("carol@x.com")

        with pytest.raises(InvitationNotFoundError):
            await accept_invitation(invitation.token, bob.id, db)
        with pytest.raises(InvitationNotFoundError):
            await accept_invitation(invitation.token, carol.id, db)

        count = await db.scalar(
            select(func.count()).select_from(TenantUser).where(TenantUser.tenant_id == active_tenant.id)
        )
        assert count == 2

    async def test_unknown_token(self, db, bob):
        with pytest.raises(InvitationNotFoundError):
            await accept_invitation("not-a-token", bob.id, db)

    async def test_expired_invitation_marked_expired(self, db, active_tenant, owner, bob):
        invitation = await invite_user(active_tenant.id, owner.id, "bob@x.com", db)
        invitation.expires_at = utc_now() - timedelta(hours=1)
        await db.commit()

        with pytest.raises(InvitationExpiredError):
            await accept_invitation(invitation.token, bob.id, db)

        status = await db.scalar(select(TenantInvitation.status).where(TenantInvitation.id == invitation.id))
        assert status == "expired"
        assert await get_tenant_member(active_tenant.id, bob.id, db) is None

        # An expired invitation no longer blocks a fresh one
        fresh = await invite_user(active_tenant.id, owner.id, "bob@x.com", db)
        assert fresh.status == "pending"

    async def test_accept_is_audited(self, db, active_tenant, owner, bob):
        invitation = await invite_user(active_tenant.id, owner.id, "bob@x.com", db)
        await accept_invitation(invitation.token, bob.id, db)

        audit = (
            await db.execute(select(TenantAuditLog).where(TenantAuditLog.action == "invitation.accepted"))
        ).scalars().one()
        assert audit.user_id == bob.id
        assert audit.changes["after"] == {"status": "accepted"}

    async def test_single_owner_index_rejects_second_owner(self, db, active_tenant, owner, bob):
        # invite_user refuses the owner role, so write the invitation directly
        token = "f" * 64
        invitation = TenantInvitation(
            tenant_id=active_tenant.id,
            email="bob@x.com",
            role="owner",
            permissions=[],
            token=token,
            invited_by=owner.id,
            status="pending",
            expires_at=utc_now() + timedelta(days=7),
        )
        db.add(invitation)
        await db.commit()
        invitation_id = invitation.id

        with pytest.raises(InvalidOperationError):
            await accept_invitation(token, bob.id, db)

        owners = await db.scalar(
            select(func.count())
            .select_from(TenantUser)
            .where(TenantUser.tenant_id == active_tenant.id, TenantUser.role == "owner")
        )
        assert owners == 1
        status = await db.scalar(select(TenantInvitation.status).where(TenantInvitation.id == invitation_id))
        assert status == "pending"

    async def test_list_invitations_by_status(self, db, active_tenant, owner, bob):
        accepted = await invite_user(active_tenant.id, owner.id, "bob@x.com", db)
        await accept_invitation(accepted.token, bob.id, db)
        await invite_user(active_tenant.id, owner.id, "dave@x.com", db)

        assert len(await list_invitations(active_tenant.id, db)) == 2
        pending = await list_invitations(active_tenant.id, db, status="pending")
        assert [i.email for i in pending] == ["dave@x.com"]


class TestTenantUsers:
    async def test_members_paginated(self, db, active_tenant, owner, make_user):
        for i in range(3):
            user = await make_user(f"student{i}@x.com")
            invitation = await invite_user(active_tenant.id, owner.id, user.email, db)
            await accept_invitation(invitation.token, user.id, db)

        first_page, total = await get_tenant_users(active_tenant.id, db, page=1, limit=3)
        second_page, _ = await get_tenant_users(active_tenant.id, db, page=2, limit=3)

        assert total == 4
        assert len(first_page) == 3
        assert len(second_page) == 1
        assert {m.id for m in first_page}.isdisjoint({m.id for m in second_page})

    async def test_inactive_members_excluded(self, db, active_tenant, bob_member):
        bob_member.is_active = False
        await db.commit()

        members, total = await get_tenant_users(active_tenant.id, db)
        assert total == 1
        assert members[0].role == "owner"


class TestUpdateUserRole:
    async def test_role_change_resets_permissions(self, db, active_tenant, owner, bob, bob_member):
        member = await update_user_role(active_tenant.id, bob.id, "manager", db, updated_by=owner.id)

        assert member.role == "manager"
        assert member.permissions == DEFAULT_PERMISSIONS_BY_ROLE["manager"]

    async def test_explicit_permissions(self, db, active_tenant, bob, bob_member):
        member = await update_user_role(active_tenant.id, bob.id, "admin", db, permissions=["users.manage"])
        assert member.permissions == ["users.manage"]

    async def test_role_change_is_audited(self, db, active_tenant, owner, bob, bob_member):
        await update_user_role(active_tenant.id, bob.id, "student", db, updated_by=owner.id)

        audit = (
            await db.execute(select(TenantAuditLog).where(TenantAuditLog.action == "user.role_updated"))
        ).scalars().one()
        assert audit.changes["before"]["role"] == "teacher"
        assert audit.changes["after"]["role"] == "student"

    async def test_owner_cannot_be_demoted(self, db, active_tenant, owner):
        with pytest.raises(OwnerProtectedError) as exc_info:
            await update_user_role(active_tenant.id, owner.id, "admin", db)

        assert exc_info.value.status_code == 403
        member = await get_tenant_member(active_tenant.id, owner.id, db)
        assert member.role == "owner"

    async def test_nobody_promoted_to_owner(self, db, active_tenant, bob, bob_member):
        with pytest.raises(InvalidOperationError):
            await update_user_role(active_tenant.id, bob.id, "owner", db)

    async def test_unknown_member(self, db, active_tenant, bob):
        with pytest.raises(TenantMemberNotFoundError):
            await update_user_role(active_tenant.id, bob.id, "teacher", db)


class TestRemoveUser:
    async def test_member_removed(self, db, active_tenant, owner, bob, bob_member):
        await remove_user_from_tenant(active_tenant.id, bob.id, db, removed_by=owner.id)

        assert await get_tenant_member(active_tenant.id, bob.id, db) is None
        audit = (
            await db.execute(select(TenantAuditLog).where(TenantAuditLog.action == "user.removed"))
        ).scalars().one()
        assert audit.changes["before"] == {"user_id": bob.id, "role": "teacher"}

    async def test_owner_cannot_be_removed(self, db, active_tenant, owner):
        with pytest.raises(OwnerProtectedError):
            await remove_user_from_tenant(active_tenant.id, owner.id, db)

        assert await get_tenant_member(active_tenant.id, owner.id, db) is not None

    async def test_unknown_member(self, db, active_tenant, bob):
        with pytest.raises(TenantMemberNotFoundError):
            await remove_user_from_tenant(active_tenant.id, bob.id, db)

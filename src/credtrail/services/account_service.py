"""
Users, tenant memberships and sessions.

Membership writes are upserts so repeated launches stay idempotent; session
creation is the one write that always inserts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credtrail.models.tenancy import (
    MembershipRole,
    SessionModel,
    TenantMembershipModel,
    UserModel,
)
from credtrail.utils.ids import PREFIX_SESSION, PREFIX_USER, generate_entity_id


@dataclass
class MembershipResult:
    membership: TenantMembershipModel
    created: bool


@dataclass
class MembershipRoleChange:
    membership: TenantMembershipModel
    previous_role: str | None
    changed: bool


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def find_user_by_email(session: AsyncSession, email: str) -> UserModel | None:
    result = await session.execute(
        select(UserModel).where(UserModel.email == normalize_email(email))
    )
    return result.scalar_one_or_none()


async def upsert_user_by_email(session: AsyncSession, email: str) -> UserModel:
    """Return the user for *email*, creating it on first use."""
    user = await find_user_by_email(session, email)
    if user is not None:
        return user

    user = UserModel(id=generate_entity_id(PREFIX_USER), email=normalize_email(email))
    session.add(user)
    await session.flush()
    return user


async def get_tenant_membership(
    session: AsyncSession, tenant_id: str, user_id: str
) -> TenantMembershipModel | None:
    return await session.get(TenantMembershipModel, (tenant_id, user_id))


async def ensure_tenant_membership(
    session: AsyncSession,
    tenant_id: str,
    user_id: str,
) -> MembershipResult:
    """Return the existing membership, or create one with the ``viewer`` role."""
    membership = await get_tenant_membership(session, tenant_id, user_id)
    if membership is not None:
        return MembershipResult(membership=membership, created=False)

    membership = TenantMembershipModel(
        tenant_id=tenant_id,
        user_id=user_id,
        role=MembershipRole.VIEWER.value,
    )
    session.add(membership)
    await session.flush()
    return MembershipResult(membership=membership, created=True)


async def upsert_tenant_membership_role(
    session: AsyncSession,
    tenant_id: str,
    user_id: str,
    role: MembershipRole | str,
) -> MembershipRoleChange:
    """Set the membership role, creating the membership if needed."""
    role_value = MembershipRole(role).value
    membership = await get_tenant_membership(session, tenant_id, user_id)

    if membership is None:
        membership = TenantMembershipModel(tenant_id=tenant_id, user_id=user_id, role=role_value)
        session.add(membership)
        await session.flush()
        return MembershipRoleChange(membership=membership, previous_role=None, changed=True)

    previous_role = membership.role
    if previous_role == role_value:
        return MembershipRoleChange(membership=membership, previous_role=previous_role, changed=False)

    membership.role = role_value
    await session.flush()
    return MembershipRoleChange(membership=membership, previous_role=previous_role, changed=True)


async def create_session(
    session: AsyncSession,
    tenant_id: str,
    user_id: str,
    session_token_hash: str,
    expires_at: datetime,
) -> SessionModel:
    record = SessionModel(
        id=generate_entity_id(PREFIX_SESSION),
        tenant_id=tenant_id,
        user_id=user_id,
        session_token_hash=session_token_hash,
        expires_at=expires_at,
    )
    session.add(record)
    await session.flush()
    return record


async def find_session_by_token_hash(
    session: AsyncSession, session_token_hash: str
) -> SessionModel | None:
    result = await session.execute(
        select(SessionModel).where(SessionModel.session_token_hash == session_token_hash)
    )
    return result.scalar_one_or_none()

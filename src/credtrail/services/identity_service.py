"""
Learner profile identity resolution.

Profiles are found through their identities.  Writes flush but never commit;
the caller's session owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credtrail.models.learner import IdentityType, LearnerIdentityModel, LearnerProfileModel
from credtrail.utils.ids import (
    PREFIX_LEARNER_IDENTITY,
    PREFIX_LEARNER_PROFILE,
    generate_entity_id,
)


@dataclass
class ProfileResolution:
    """A learner profile plus whether this call created it."""

    profile: LearnerProfileModel
    created: bool


def learner_subject_id(tenant_id: str, learner_profile_id: str) -> str:
    return f"urn:credtrail:learner:{tenant_id}:{learner_profile_id}"


async def find_learner_profile_by_identity(
    session: AsyncSession,
    tenant_id: str,
    identity_type: IdentityType | str,
    identity_value: str,
) -> LearnerProfileModel | None:
    """Look up the profile an identity value is linked to. Returns None if unlinked."""
    result = await session.execute(
        select(LearnerProfileModel)
        .join(
            LearnerIdentityModel,
            LearnerIdentityModel.learner_profile_id == LearnerProfileModel.id,
        )
        .where(
            LearnerIdentityModel.tenant_id == tenant_id,
            LearnerIdentityModel.identity_type == str(identity_type),
            LearnerIdentityModel.identity_value == identity_value,
        )
    )
    return result.scalar_one_or_none()


async def resolve_learner_profile_for_identity(
    session: AsyncSession,
    tenant_id: str,
    identity_type: IdentityType | str,
    identity_value: str,
    display_name: str | None = None,
) -> ProfileResolution:
    """
    Resolve the profile for an identity, creating both on first sight.

    The same ``(tenant_id, identity_type, identity_value)`` always maps to the
    same profile.  A display name is filled in on an existing profile only
    when it has none yet.
    """
    existing = await find_learner_profile_by_identity(
        session, tenant_id, identity_type, identity_value
    )

    if existing is not None:
        if display_name and not existing.display_name:
            existing.display_name = display_name
            await session.flush()
        return ProfileResolution(profile=existing, created=False)

    profile_id = generate_entity_id(PREFIX_LEARNER_PROFILE)
    profile = LearnerProfileModel(
        id=profile_id,
        tenant_id=tenant_id,
        subject_id=learner_subject_id(tenant_id, profile_id),
        display_name=display_name,
    )
    session.add(profile)
    session.add(
        LearnerIdentityModel(
            id=generate_entity_id(PREFIX_LEARNER_IDENTITY),
            tenant_id=tenant_id,
            learner_profile_id=profile_id,
            identity_type=str(identity_type),
            identity_value=identity_value,
            is_primary=True,
            is_verified=True,
        )
    )
    await session.flush()
    return ProfileResolution(profile=profile, created=True)


async def add_learner_identity_alias(
    session: AsyncSession,
    tenant_id: str,
    learner_profile_id: str,
    identity_type: IdentityType | str,
    identity_value: str,
    is_primary: bool = False,
    is_verified: bool = False,
) -> LearnerIdentityModel:
    """
    Attach a secondary identity to a profile.

    The unique ``(tenant_id, identity_type, identity_value)`` constraint
    rejects a value already bound elsewhere with an ``IntegrityError``.
    """
    identity = LearnerIdentityModel(
        id=generate_entity_id(PREFIX_LEARNER_IDENTITY),
        tenant_id=tenant_id,
        learner_profile_id=learner_profile_id,
        identity_type=str(identity_type),
        identity_value=identity_value,
        is_primary=is_primary,
        is_verified=is_verified,
    )
    session.add(identity)
    await session.flush()
    return identity


async def list_learner_identities(
    session: AsyncSession,
    learner_profile_id: str,
) -> list[LearnerIdentityModel]:
    result = await session.execute(
        select(LearnerIdentityModel)
        .where(LearnerIdentityModel.learner_profile_id == learner_profile_id)
        .order_by(LearnerIdentityModel.identity_type, LearnerIdentityModel.identity_value)
    )
    return list(result.scalars().all())

"""
Link a validated launch to local learner, user and membership records.

The federated subject ``{iss}::{sub}`` is the primary key for a launch
identity.  Email and sourced-id claims are attached to the same learner
profile as secondary, verified aliases unless they already belong to a
different profile, in which case the whole launch is a conflict.

All writes go through the caller's session; the caller owns commit and
rollback, so a conflict leaves nothing behind once it rolls back.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from enum import StrEnum

from sqlalchemy.ext.asyncio import AsyncSession

from credtrail.models.learner import IdentityType
from credtrail.models.tenancy import MembershipRole
from credtrail.services.account_service import (
    ensure_tenant_membership,
    normalize_email,
    upsert_tenant_membership_role,
    upsert_user_by_email,
)
from credtrail.services.identity_service import (
    add_learner_identity_alias,
    find_learner_profile_by_identity,
    resolve_learner_profile_for_identity,
)

from .claims import (
    LtiLaunchClaims,
    LtiRoleKind,
    display_name_from_claims,
    email_from_claims,
    membership_role_for,
    sourced_id_from_claims,
)
from .constants import LTI_SYNTHETIC_EMAIL_DOMAIN

logger = logging.getLogger(__name__)


def federated_subject(issuer: str, subject: str) -> str:
    return f"{issuer}::{subject}"


def synthetic_email(tenant_id: str, subject: str) -> str:
    """Stable placeholder address for a launch that carries no usable email claim."""
    digest = hashlib.sha256(f"{tenant_id}:{subject}".encode("utf-8")).hexdigest()
    return f"lti-{digest[:32]}@{LTI_SYNTHETIC_EMAIL_DOMAIN}"


class AliasLinkStatus(StrEnum):
    CREATED = "created"
    REUSED = "reused"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class AliasLink:
    identity_type: IdentityType
    status: AliasLinkStatus
    reason: str | None = None


@dataclass(frozen=True)
class LinkedAccount:
    learner_profile_id: str
    profile_created: bool
    user_id: str
    user_email: str
    membership_role: str
    aliases: tuple[AliasLink, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LinkConflict:
    reason: str
    identity_type: IdentityType


IdentityLinkResult = LinkedAccount | LinkConflict


async def link_alias(
    session: AsyncSession,
    *,
    tenant_id: str,
    learner_profile_id: str,
    identity_type: IdentityType,
    identity_value: str,
) -> AliasLink:
    """Attach one alias to a profile, or report the profile it already belongs to."""
    owner = await find_learner_profile_by_identity(session, tenant_id, identity_type, identity_value)

    if owner is None:
        await add_learner_identity_alias(
            session,
            tenant_id,
            learner_profile_id,
            identity_type,
            identity_value,
            is_primary=False,
            is_verified=True,
        )
        return AliasLink(identity_type=identity_type, status=AliasLinkStatus.CREATED)

    if owner.id == learner_profile_id:
        return AliasLink(identity_type=identity_type, status=AliasLinkStatus.REUSED)

    return AliasLink(
        identity_type=identity_type,
        status=AliasLinkStatus.CONFLICT,
        reason=(
            f"LTI {identity_type} claim is already linked to a different learner profile "
            f"({owner.id}) than federated subject profile ({learner_profile_id})"
        ),
    )


async def link_launch_identity(
    session: AsyncSession,
    *,
    tenant_id: str,
    claims: LtiLaunchClaims,
    role_kind: LtiRoleKind,
) -> IdentityLinkResult:
    """
    Resolve the learner profile, user and tenant membership for a launch.

    Steps:
    1. Resolve (or create) the profile for the federated subject.
    2. Attach email then sourced-id aliases; the first conflict stops here.
    3. Upsert the user by email, or by a synthetic address.
    4. Ensure tenant membership; an instructor launch promotes a viewer to
       issuer and never demotes.
    """
    subject = federated_subject(claims.iss, claims.sub)
    resolution = await resolve_learner_profile_for_identity(
        session,
        tenant_id,
        IdentityType.SAML_SUBJECT,
        subject,
        display_name=display_name_from_claims(claims),
    )
    profile = resolution.profile

    email = email_from_claims(claims)
    candidates: list[tuple[IdentityType, str]] = []
    if email is not None:
        candidates.append((IdentityType.EMAIL, normalize_email(email)))
    sourced_id = sourced_id_from_claims(claims)
    if sourced_id is not None:
        candidates.append((IdentityType.SOURCED_ID, sourced_id))

    aliases: list[AliasLink] = []
    for identity_type, identity_value in candidates:
        link = await link_alias(
            session,
            tenant_id=tenant_id,
            learner_profile_id=profile.id,
            identity_type=identity_type,
            identity_value=identity_value,
        )
        if link.status is AliasLinkStatus.CONFLICT:
            logger.warning(
                "LTI identity conflict for %s in tenant %s: %s", subject, tenant_id, link.reason
            )
            return LinkConflict(reason=link.reason or "identity conflict", identity_type=identity_type)
        aliases.append(link)

    user = await upsert_user_by_email(session, email or synthetic_email(tenant_id, subject))

    membership = (await ensure_tenant_membership(session, tenant_id, user.id)).membership
    desired_role = membership_role_for(role_kind)
    if desired_role is MembershipRole.ISSUER and membership.role == MembershipRole.VIEWER:
        change = await upsert_tenant_membership_role(session, tenant_id, user.id, desired_role)
        membership = change.membership
        logger.info("Promoted user %s to issuer in tenant %s via LTI launch", user.id, tenant_id)

    return LinkedAccount(
        learner_profile_id=profile.id,
        profile_created=resolution.created,
        user_id=user.id,
        user_email=user.email,
        membership_role=membership.role,
        aliases=tuple(aliases),
    )

"""
Persisted LTI issuer registrations.

Issuers are stored under their normalized form so the registry merge can
key both sources identically.
"""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from credtrail.lti.urls import normalize_issuer
from credtrail.models.lti_registration import LtiIssuerRegistrationModel


async def list_lti_issuer_registrations(
    session: AsyncSession,
) -> list[LtiIssuerRegistrationModel]:
    result = await session.execute(
        select(LtiIssuerRegistrationModel).order_by(LtiIssuerRegistrationModel.issuer)
    )
    return list(result.scalars().all())


async def upsert_lti_issuer_registration(
    session: AsyncSession,
    issuer: str,
    tenant_id: str,
    authorization_endpoint: str,
    client_id: str,
    token_endpoint: str | None = None,
    client_secret: str | None = None,
    allow_unsigned_id_token: bool = False,
) -> LtiIssuerRegistrationModel:
    """Create or replace the registration for *issuer*."""
    key = normalize_issuer(issuer)
    registration = await session.get(LtiIssuerRegistrationModel, key)

    if registration is None:
        registration = LtiIssuerRegistrationModel(issuer=key)
        session.add(registration)

    registration.tenant_id = tenant_id
    registration.authorization_endpoint = authorization_endpoint
    registration.client_id = client_id
    registration.token_endpoint = token_endpoint
    registration.client_secret = client_secret
    registration.allow_unsigned_id_token = allow_unsigned_id_token

    await session.flush()
    return registration


async def delete_lti_issuer_registration(session: AsyncSession, issuer: str) -> bool:
    """Delete the registration for *issuer*. Returns False if none existed."""
    result = await session.execute(
        delete(LtiIssuerRegistrationModel).where(
            LtiIssuerRegistrationModel.issuer == normalize_issuer(issuer)
        )
    )
    return result.rowcount > 0

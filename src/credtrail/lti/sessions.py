"""
Browser session issuance for completed launches.

The opaque token goes to the browser in the session cookie; only its SHA-256
hex digest is persisted.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from fastapi import Response
from sqlalchemy.ext.asyncio import AsyncSession

from credtrail.models.tenancy import SessionModel
from credtrail.services.account_service import create_session
from credtrail.settings import Settings


def generate_opaque_token() -> str:
    return secrets.token_urlsafe(32)


def hash_session_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IssuedSession:
    session_token: str = field(repr=False)
    record: SessionModel


async def issue_session(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    now: datetime,
    ttl_seconds: int,
) -> IssuedSession:
    token = generate_opaque_token()
    record = await create_session(
        session,
        tenant_id=tenant_id,
        user_id=user_id,
        session_token_hash=hash_session_token(token),
        expires_at=now + timedelta(seconds=ttl_seconds),
    )
    return IssuedSession(session_token=token, record=record)


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_seconds,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )

"""
Users, tenant memberships and browser sessions.

A user is global (keyed by email); membership scopes the user into a tenant
with one of the :class:`MembershipRole` values.
"""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from .base import Base, TimestampMixin


class MembershipRole(StrEnum):
    VIEWER = "viewer"
    ISSUER = "issuer"
    ADMIN = "admin"
    OWNER = "owner"


class UserModel(Base, TimestampMixin):
    """SQLAlchemy model for users table."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Stored lowercased; lookups normalize the same way.
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)


class TenantMembershipModel(Base, TimestampMixin):
    """SQLAlchemy model for tenant_memberships table."""

    __tablename__ = "tenant_memberships"

    tenant_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), primary_key=True)
    role: Mapped[str] = mapped_column(String, nullable=False, default=MembershipRole.VIEWER.value)


class SessionModel(Base):
    """SQLAlchemy model for sessions table. Only the token hash is stored."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    session_token_hash: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_sessions_tenant_user", "tenant_id", "user_id"),)

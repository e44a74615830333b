"""
Learner profile models.

A learner profile is the tenant-scoped recipient of credentials.  It is
reachable through one or more identities (federated subject, email,
sourced id); each identity value belongs to at most one profile per tenant.
"""

from enum import StrEnum

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin


class IdentityType(StrEnum):
    EMAIL = "email"
    # Federated "{issuer}::{sub}" subjects share the SSO identity type.
    SAML_SUBJECT = "saml_subject"
    SOURCED_ID = "sourced_id"


class LearnerProfileModel(Base, TimestampMixin):
    """SQLAlchemy model for learner_profiles table."""

    __tablename__ = "learner_profiles"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    subject_id: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    identities: Mapped[list["LearnerIdentityModel"]] = relationship(
        "LearnerIdentityModel",
        back_populates="learner_profile",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "subject_id", name="uq_learner_profile_tenant_subject"),
    )


class LearnerIdentityModel(Base, TimestampMixin):
    """SQLAlchemy model for learner_identities table."""

    __tablename__ = "learner_identities"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    learner_profile_id: Mapped[str] = mapped_column(
        String, ForeignKey("learner_profiles.id"), nullable=False
    )
    identity_type: Mapped[str] = mapped_column(String, nullable=False)
    identity_value: Mapped[str] = mapped_column(String, nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    learner_profile: Mapped[LearnerProfileModel] = relationship(
        "LearnerProfileModel", back_populates="identities"
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "identity_type", "identity_value", name="uq_learner_identity_value"
        ),
        Index("idx_learner_identity_profile", "learner_profile_id"),
    )

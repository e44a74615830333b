"""
Persisted LTI issuer registrations.

Rows here shadow entries of the static ``CREDTRAIL_LTI_ISSUER_REGISTRY_JSON``
registry that share the same normalized issuer.
"""

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class LtiIssuerRegistrationModel(Base, TimestampMixin):
    """SQLAlchemy model for lti_issuer_registrations table."""

    __tablename__ = "lti_issuer_registrations"

    issuer: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    authorization_endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    client_id: Mapped[str] = mapped_column(String, nullable=False)
    token_endpoint: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    allow_unsigned_id_token: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

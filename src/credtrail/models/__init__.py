"""
CredTrail persistence models.

Importing this package registers every table on ``Base.metadata``.
"""

from .badge_template import BadgeTemplateModel
from .base import Base, TimestampMixin
from .learner import IdentityType, LearnerIdentityModel, LearnerProfileModel
from .lti_registration import LtiIssuerRegistrationModel
from .tenancy import MembershipRole, SessionModel, TenantMembershipModel, UserModel

__all__ = [
    "BadgeTemplateModel",
    "Base",
    "IdentityType",
    "LearnerIdentityModel",
    "LearnerProfileModel",
    "LtiIssuerRegistrationModel",
    "MembershipRole",
    "SessionModel",
    "TenantMembershipModel",
    "TimestampMixin",
    "UserModel",
]

"""
LTI 1.3 launch claims: schema, role resolution and launch validation.

``validate_launch`` runs after the state token has been verified and the
issuer entry looked up.  Checks run in a fixed order and the first failure
is raised as a typed :class:`~credtrail.lti.errors.LtiLaunchError` carrying
that check's reason string.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from credtrail.models.tenancy import MembershipRole

from .constants import (
    LTI_CLAIM_CONTEXT,
    LTI_CLAIM_CUSTOM,
    LTI_CLAIM_DEEP_LINKING_SETTINGS,
    LTI_CLAIM_DEPLOYMENT_ID,
    LTI_CLAIM_LIS,
    LTI_CLAIM_MESSAGE_TYPE,
    LTI_CLAIM_NRPS_NAMES_ROLE_SERVICE,
    LTI_CLAIM_RESOURCE_LINK,
    LTI_CLAIM_ROLES,
    LTI_CLAIM_TARGET_LINK_URI,
    LTI_CLAIM_VERSION,
    LTI_CONTENT_ITEM_RESOURCE_LINK,
    LTI_ID_TOKEN_IAT_SKEW_SECONDS,
    LTI_MESSAGE_TYPE_DEEP_LINKING_REQUEST,
    LTI_MESSAGE_TYPE_RESOURCE_LINK_REQUEST,
    LTI_VERSION_1P3P0,
)
from .errors import LtiBadRequest, LtiForbidden, LtiNotImplemented
from .registry import IssuerRegistryEntry
from .state import LtiStatePayload
from .tokens import parse_compact_token
from .urls import is_absolute_http_url, normalize_issuer, normalize_url_for_comparison


class LtiRoleKind(StrEnum):
    INSTRUCTOR = "instructor"
    LEARNER = "learner"
    UNKNOWN = "unknown"


# Case-insensitive substring -> role kind.  Any instructor match beats any
# learner match across the whole roles list.
ROLE_FRAGMENTS: tuple[tuple[str, LtiRoleKind], ...] = (
    ("instructor", LtiRoleKind.INSTRUCTOR),
    ("administrator", LtiRoleKind.INSTRUCTOR),
    ("faculty", LtiRoleKind.INSTRUCTOR),
    ("learner", LtiRoleKind.LEARNER),
    ("student", LtiRoleKind.LEARNER),
    ("membership#", LtiRoleKind.LEARNER),
)

ROLE_KIND_LABELS = {
    LtiRoleKind.INSTRUCTOR: "Instructor",
    LtiRoleKind.LEARNER: "Learner",
    LtiRoleKind.UNKNOWN: "Unknown role",
}


def resolve_role_kind(roles: Iterable[str]) -> LtiRoleKind:
    """
    Collapse LTI role URIs into instructor / learner / unknown.

    >>> resolve_role_kind(["http://purl.imsglobal.org/vocab/lis/v2/membership#Learner"])
    <LtiRoleKind.LEARNER: 'learner'>
    """
    matched = {
        kind
        for role in roles
        for fragment, kind in ROLE_FRAGMENTS
        if fragment in role.lower()
    }
    if LtiRoleKind.INSTRUCTOR in matched:
        return LtiRoleKind.INSTRUCTOR
    if LtiRoleKind.LEARNER in matched:
        return LtiRoleKind.LEARNER
    return LtiRoleKind.UNKNOWN


def membership_role_for(role_kind: LtiRoleKind) -> MembershipRole:
    return MembershipRole.ISSUER if role_kind is LtiRoleKind.INSTRUCTOR else MembershipRole.VIEWER


class ResourceLinkClaim(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    id: str | None = None
    title: str | None = None


class LtiLaunchClaims(BaseModel):
    """
    The subset of an LTI 1.3 ``id_token`` payload this service reads.

    Namespaced claims are read only from their IMS URI keys; a bare
    ``deployment_id`` or ``roles`` at the top level is just an unknown claim,
    kept in ``model_extra``.  Numeric claims must be finite.
    """

    model_config = ConfigDict(extra="allow", frozen=True, allow_inf_nan=False)

    iss: str = Field(min_length=1)
    sub: str = Field(min_length=1)
    aud: str | list[str]
    exp: float
    iat: float
    nonce: str = Field(min_length=1)

    deployment_id: str = Field(alias=LTI_CLAIM_DEPLOYMENT_ID, min_length=1)
    message_type: str = Field(alias=LTI_CLAIM_MESSAGE_TYPE, min_length=1)
    version: str = Field(alias=LTI_CLAIM_VERSION)
    target_link_uri: str = Field(alias=LTI_CLAIM_TARGET_LINK_URI, min_length=1)
    resource_link: ResourceLinkClaim | None = Field(default=None, alias=LTI_CLAIM_RESOURCE_LINK)
    roles: list[str] = Field(default_factory=list, alias=LTI_CLAIM_ROLES)
    context: dict[str, Any] | None = Field(default=None, alias=LTI_CLAIM_CONTEXT)
    lis: dict[str, Any] | None = Field(default=None, alias=LTI_CLAIM_LIS)
    custom: dict[str, Any] | None = Field(default=None, alias=LTI_CLAIM_CUSTOM)
    deep_linking_settings: dict[str, Any] | None = Field(
        default=None, alias=LTI_CLAIM_DEEP_LINKING_SETTINGS
    )
    names_role_service: dict[str, Any] | None = Field(
        default=None, alias=LTI_CLAIM_NRPS_NAMES_ROLE_SERVICE
    )

    email: Any = None
    name: Any = None
    given_name: Any = None
    family_name: Any = None

    @field_validator("version")
    @classmethod
    def _lti_1p3(cls, value: str) -> str:
        if value != LTI_VERSION_1P3P0:
            raise ValueError(f"unsupported LTI version {value!r}")
        return value

    @field_validator("aud")
    @classmethod
    def _non_empty_audience(cls, value: str | list[str]) -> str | list[str]:
        audiences = [value] if isinstance(value, str) else value
        if not audiences or not all(audiences):
            raise ValueError("aud must be a non-empty string or list of non-empty strings")
        return value

    def audience_includes(self, client_id: str) -> bool:
        if isinstance(self.aud, str):
            return self.aud == client_id
        return client_id in self.aud


def _claim_text(value: Any) -> str | None:
    """Trimmed string claim, or None.  Unsubstituted ``$Variable`` placeholders count as absent."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.startswith("$"):
        return None
    return value


def email_from_claims(claims: LtiLaunchClaims) -> str | None:
    email = _claim_text(claims.email)
    return email if email and "@" in email else None


def sourced_id_from_claims(claims: LtiLaunchClaims) -> str | None:
    if not claims.lis:
        return None
    return _claim_text(claims.lis.get("person_sourcedid"))


def display_name_from_claims(claims: LtiLaunchClaims) -> str | None:
    name = _claim_text(claims.name)
    if name:
        return name
    parts = [_claim_text(claims.given_name), _claim_text(claims.family_name)]
    joined = " ".join(part for part in parts if part)
    return joined or None


@dataclass(frozen=True)
class DeepLinkingSettings:
    deep_link_return_url: str
    accept_types: tuple[str, ...] | None = None
    data: str | None = None


def parse_deep_linking_settings(raw: dict[str, Any] | None) -> DeepLinkingSettings | None:
    """Read the deep-linking settings claim. Returns None if any field is malformed."""
    if raw is None:
        return None

    return_url = raw.get("deep_link_return_url")
    if not isinstance(return_url, str) or not is_absolute_http_url(return_url):
        return None

    accept_types = raw.get("accept_types")
    if accept_types is not None:
        if not isinstance(accept_types, list) or not all(
            isinstance(item, str) and item for item in accept_types
        ):
            return None
        accept_types = tuple(accept_types)

    data = raw.get("data")
    if data is not None and (not isinstance(data, str) or not data):
        return None

    return DeepLinkingSettings(
        deep_link_return_url=return_url.strip(),
        accept_types=accept_types,
        data=data,
    )


@dataclass(frozen=True)
class ValidatedLaunch:
    claims: LtiLaunchClaims
    role_kind: LtiRoleKind
    target_link_uri: str
    deep_linking: DeepLinkingSettings | None = None

    @property
    def is_deep_linking(self) -> bool:
        return self.deep_linking is not None


def validate_launch(
    id_token: str,
    *,
    state: LtiStatePayload,
    issuer_entry: IssuerRegistryEntry,
    now: datetime,
    unsigned_permitted: bool,
) -> ValidatedLaunch:
    """
    Validate an ``id_token`` against the verified state and the issuer entry.

    Raises :class:`LtiBadRequest`, :class:`LtiForbidden` or
    :class:`LtiNotImplemented` with the reason of the first failed check.
    """
    parsed = parse_compact_token(id_token)
    if parsed is None:
        raise LtiBadRequest("id_token must be a compact JWT with valid JSON header and payload")
    header, payload = parsed

    alg = header.get("alg")
    if not isinstance(alg, str) or not alg.strip() or alg.strip().lower() == "none":
        raise LtiBadRequest('id_token must specify a JOSE alg and must not use "none"')

    if not (issuer_entry.allow_unsigned_id_token and unsigned_permitted):
        raise LtiNotImplemented(
            "LTI issuer requires signature verification configuration; "
            "set allowUnsignedIdToken only for test launches"
        )

    try:
        claims = LtiLaunchClaims.model_validate(payload)
    except ValidationError as exc:
        raise LtiBadRequest("id_token launch claims are invalid for LTI 1.3") from exc

    _check_against_state(claims, state, now)
    resolved_target = claims.target_link_uri.strip()
    role_kind = resolve_role_kind(claims.roles)

    if claims.message_type == LTI_MESSAGE_TYPE_RESOURCE_LINK_REQUEST:
        if claims.resource_link is None or not _claim_text(claims.resource_link.id):
            raise LtiBadRequest("id_token for LtiResourceLinkRequest must include resource_link.id")
        return ValidatedLaunch(claims=claims, role_kind=role_kind, target_link_uri=resolved_target)

    if claims.message_type == LTI_MESSAGE_TYPE_DEEP_LINKING_REQUEST:
        if role_kind is not LtiRoleKind.INSTRUCTOR:
            raise LtiForbidden("LtiDeepLinkingRequest requires instructor role")

        settings = parse_deep_linking_settings(claims.deep_linking_settings)
        if settings is None:
            raise LtiBadRequest(
                "id_token for LtiDeepLinkingRequest must include "
                "deep_linking_settings.deep_link_return_url"
            )
        accept_types = settings.accept_types
        if accept_types is not None and LTI_CONTENT_ITEM_RESOURCE_LINK not in accept_types:
            raise LtiBadRequest("deep_linking_settings.accept_types must include ltiResourceLink")
        return ValidatedLaunch(
            claims=claims,
            role_kind=role_kind,
            target_link_uri=resolved_target,
            deep_linking=settings,
        )

    raise LtiBadRequest(f"Unsupported LTI message_type: {claims.message_type}")


def _check_against_state(claims: LtiLaunchClaims, state: LtiStatePayload, now: datetime) -> None:
    if normalize_issuer(claims.iss) != normalize_issuer(state.iss):
        raise LtiBadRequest("id_token issuer does not match state issuer")

    if not claims.audience_includes(state.client_id):
        raise LtiBadRequest("id_token aud does not include configured client_id")

    if claims.nonce != state.nonce:
        raise LtiBadRequest("id_token nonce does not match launch state nonce")

    now_seconds = now.timestamp()
    if claims.exp <= now_seconds:
        raise LtiBadRequest("id_token is expired")
    if claims.iat > now_seconds + LTI_ID_TOKEN_IAT_SKEW_SECONDS:
        raise LtiBadRequest("id_token iat is in the future")

    if state.lti_deployment_id is not None and claims.deployment_id != state.lti_deployment_id:
        raise LtiBadRequest("id_token deployment_id does not match launch initiation")

    claim_target = normalize_url_for_comparison(claims.target_link_uri)
    state_target = normalize_url_for_comparison(state.target_link_uri)
    if claim_target is None or claim_target != state_target:
        raise LtiBadRequest("id_token target_link_uri does not match launch initiation")

"""
Names and Role Provisioning Services (NRPS) data shapes.

Only parsing lives here: the launch claim advertising the memberships
endpoint, and the membership container a platform returns from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .claims import LtiLaunchClaims
from .urls import is_absolute_http_url

LEARNER_ROLE_MARKERS = ("#learner", "#student")


def _text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [entry for entry in (_text(item) for item in value) if entry is not None]


@dataclass(frozen=True)
class NamesRoleServiceClaim:
    context_memberships_url: str
    service_versions: tuple[str, ...] = ()


@dataclass(frozen=True)
class NrpsMember:
    user_id: str
    sourced_id: str | None
    display_name: str | None
    email: str | None
    status: str | None
    picture_url: str | None
    roles: tuple[str, ...]
    is_learner: bool

    @property
    def role_summary(self) -> str:
        return ", ".join(self.roles)


@dataclass(frozen=True)
class NrpsRoster:
    context_id: str | None
    members: tuple[NrpsMember, ...]

    @property
    def learner_members(self) -> tuple[NrpsMember, ...]:
        return tuple(member for member in self.members if member.is_learner)


def parse_names_role_service_claim(claims: LtiLaunchClaims) -> NamesRoleServiceClaim | None:
    """Return the NRPS claim, or None if absent or without an absolute memberships URL."""
    claim = claims.names_role_service
    if not claim:
        return None

    url = _text(claim.get("context_memberships_url"))
    if url is None or not is_absolute_http_url(url):
        return None

    return NamesRoleServiceClaim(
        context_memberships_url=url,
        service_versions=tuple(_text_list(claim.get("service_versions"))),
    )


def parse_nrps_member(raw: Any) -> NrpsMember | None:
    if not isinstance(raw, dict):
        return None
    user_id = _text(raw.get("user_id"))
    if user_id is None:
        return None

    roles = _text_list(raw.get("roles"))
    is_learner = any(
        marker in role.lower() for role in roles for marker in LEARNER_ROLE_MARKERS
    )
    given_family = " ".join(
        part for part in (_text(raw.get("given_name")), _text(raw.get("family_name"))) if part
    )

    return NrpsMember(
        user_id=user_id,
        sourced_id=_text(raw.get("lis_person_sourcedid")),
        display_name=_text(raw.get("name")) or given_family or None,
        email=_text(raw.get("email")),
        status=_text(raw.get("status")),
        picture_url=_text(raw.get("picture")),
        roles=tuple(roles),
        is_learner=is_learner,
    )


def parse_nrps_roster(raw: Any) -> NrpsRoster:
    """
    Parse a membership container.

    Members without a ``user_id`` are skipped.  Raises ``ValueError`` when the
    container is not an object or has no ``members`` list.
    """
    if not isinstance(raw, dict):
        raise ValueError("NRPS membership response must be a JSON object")
    entries = raw.get("members")
    if not isinstance(entries, list):
        raise ValueError("NRPS membership response is missing members[]")

    members = tuple(member for member in map(parse_nrps_member, entries) if member is not None)
    context = raw.get("context")
    context_id = _text(context.get("id")) if isinstance(context, dict) else None
    return NrpsRoster(context_id=context_id, members=members)

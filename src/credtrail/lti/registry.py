"""
LTI issuer registry.

Two sources describe which platforms may launch into which tenant:

- the static ``CREDTRAIL_LTI_ISSUER_REGISTRY_JSON`` blob, shaped as::

      {"https://canvas.example.edu": {"tenantId": "...", "clientId": "...",
        "authorizationEndpoint": "...", "allowUnsignedIdToken": false}}

- rows in ``lti_issuer_registrations``.

Both are keyed by normalized issuer and the registry is rebuilt on every
request; a DB row replaces the static entry for the same issuer.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from credtrail.models.lti_registration import LtiIssuerRegistrationModel
from credtrail.services.registration_service import list_lti_issuer_registrations
from credtrail.settings import Settings

from .errors import IssuerRegistryConfigError
from .urls import is_absolute_http_url, normalize_issuer

logger = logging.getLogger(__name__)


class IssuerRegistryEntry(BaseModel):
    """Tenant and OIDC client configuration for one platform issuer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    issuer: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    authorization_endpoint: str
    client_id: str = Field(min_length=1)
    token_endpoint: str | None = None
    client_secret: str | None = Field(default=None, repr=False)
    allow_unsigned_id_token: bool = False

    @field_validator("issuer")
    @classmethod
    def _normalize_issuer(cls, value: str) -> str:
        return normalize_issuer(value)

    @field_validator("authorization_endpoint", "token_endpoint")
    @classmethod
    def _absolute_http_url(cls, value: str | None) -> str | None:
        if value is not None and not is_absolute_http_url(value):
            raise ValueError("must be an absolute http(s) URL")
        return value


IssuerRegistry = dict[str, IssuerRegistryEntry]


def parse_static_registry(raw: str) -> IssuerRegistry:
    """
    Parse the static registry JSON.

    An empty string is an empty registry.  Anything malformed raises
    :class:`IssuerRegistryConfigError`.
    """
    if not raw.strip():
        return {}

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise IssuerRegistryConfigError("LTI issuer registry JSON is not valid JSON") from exc

    if not isinstance(document, dict):
        raise IssuerRegistryConfigError("LTI issuer registry JSON must be an object keyed by issuer")

    registry: IssuerRegistry = {}
    for issuer, settings in document.items():
        if not isinstance(settings, dict):
            raise IssuerRegistryConfigError(f"LTI issuer registry entry for {issuer!r} must be an object")
        entry = _validated_entry(issuer, {**settings, "issuer": issuer})
        registry[entry.issuer] = entry

    return registry


def entry_from_registration(row: LtiIssuerRegistrationModel) -> IssuerRegistryEntry:
    return _validated_entry(
        row.issuer,
        {
            "issuer": row.issuer,
            "tenant_id": row.tenant_id,
            "authorization_endpoint": row.authorization_endpoint,
            "client_id": row.client_id,
            "token_endpoint": row.token_endpoint,
            "client_secret": row.client_secret,
            "allow_unsigned_id_token": row.allow_unsigned_id_token,
        },
    )


def _validated_entry(issuer: str, data: Mapping[str, Any]) -> IssuerRegistryEntry:
    try:
        return IssuerRegistryEntry.model_validate(data)
    except ValidationError as exc:
        fields = ", ".join(sorted({str(error["loc"][0]) for error in exc.errors() if error["loc"]}))
        raise IssuerRegistryConfigError(
            f"LTI issuer registry entry for {issuer!r} is invalid ({fields})"
        ) from exc


def merge_issuer_registry(
    static_registry: Mapping[str, IssuerRegistryEntry],
    registrations: Iterable[LtiIssuerRegistrationModel],
) -> IssuerRegistry:
    """Overlay persisted registrations on the static registry. DB rows win."""
    merged: IssuerRegistry = dict(static_registry)
    for row in registrations:
        entry = entry_from_registration(row)
        if entry.issuer in merged:
            logger.debug("LTI issuer %s: DB registration overrides static config", entry.issuer)
        merged[entry.issuer] = entry
    return merged


async def resolve_issuer_registry(session: AsyncSession, settings: Settings) -> IssuerRegistry:
    static_registry = parse_static_registry(settings.lti_issuer_registry_json)
    registrations = await list_lti_issuer_registrations(session)
    return merge_issuer_registry(static_registry, registrations)

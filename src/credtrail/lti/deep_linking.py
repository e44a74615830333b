"""
Deep-linking responses: one ``ltiResourceLink`` per active badge template.

Each option carries its own pre-built response token so the selection page
is a set of plain forms posting ``JWT`` back to the platform.  Tokens are
unsigned (``alg=none``) until tool signing keys exist; platforms that verify
response signatures reject them.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pylti1p3.deep_link_resource import DeepLinkResource

from credtrail.models.badge_template import BadgeTemplateModel

from .claims import DeepLinkingSettings
from .constants import (
    LTI_CLAIM_DEEP_LINKING_CONTENT_ITEMS,
    LTI_CLAIM_DEEP_LINKING_DATA,
    LTI_CLAIM_DEPLOYMENT_ID,
    LTI_CLAIM_MESSAGE_TYPE,
    LTI_CLAIM_VERSION,
    LTI_CONTENT_ITEM_RESOURCE_LINK,
    LTI_DEEP_LINK_RESPONSE_TTL_SECONDS,
    LTI_MESSAGE_TYPE_DEEP_LINKING_RESPONSE,
    LTI_VERSION_1P3P0,
)
from .tokens import unsigned_compact_token
from .urls import set_query_params

BADGE_TEMPLATE_ID_PARAM = "badgeTemplateId"


@dataclass(frozen=True)
class DeepLinkOption:
    badge_template_id: str
    title: str
    description: str | None
    launch_url: str
    response_token: str


def content_item_text(template: BadgeTemplateModel) -> str:
    description = (template.description or "").strip()
    return description or f"CredTrail badge template {template.title} ({template.id})"


def build_resource_link_item(template: BadgeTemplateModel, launch_url: str) -> dict[str, Any]:
    resource = (
        DeepLinkResource()
        .set_url(launch_url)
        .set_title(template.title)
        .set_custom_params({BADGE_TEMPLATE_ID_PARAM: template.id})
    )
    return {
        "type": LTI_CONTENT_ITEM_RESOURCE_LINK,
        "title": resource.get_title(),
        "url": resource.get_url(),
        "text": content_item_text(template),
        "custom": resource.get_custom_params(),
    }


def build_deep_linking_response_payload(
    *,
    tool_issuer: str,
    client_id: str,
    nonce: str,
    deployment_id: str,
    content_items: list[dict[str, Any]],
    issued_at: int,
    data: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "iss": tool_issuer,
        "aud": client_id,
        "iat": issued_at,
        "exp": issued_at + LTI_DEEP_LINK_RESPONSE_TTL_SECONDS,
        "nonce": nonce,
        LTI_CLAIM_DEPLOYMENT_ID: deployment_id,
        LTI_CLAIM_MESSAGE_TYPE: LTI_MESSAGE_TYPE_DEEP_LINKING_RESPONSE,
        LTI_CLAIM_VERSION: LTI_VERSION_1P3P0,
        LTI_CLAIM_DEEP_LINKING_CONTENT_ITEMS: content_items,
    }
    if data is not None:
        payload[LTI_CLAIM_DEEP_LINKING_DATA] = data
    return payload


def build_deep_link_options(
    templates: Iterable[BadgeTemplateModel],
    *,
    settings: DeepLinkingSettings,
    target_link_uri: str,
    tool_issuer: str,
    client_id: str,
    nonce: str,
    deployment_id: str,
    now: datetime,
) -> list[DeepLinkOption]:
    """
    Build one selectable option per template.

    The launch URL is the resolved target link URI with ``badgeTemplateId``
    set; an existing ``badgeTemplateId`` query value is replaced.
    """
    issued_at = int(now.timestamp())
    options: list[DeepLinkOption] = []

    for template in templates:
        launch_url = set_query_params(target_link_uri, {BADGE_TEMPLATE_ID_PARAM: template.id})
        payload = build_deep_linking_response_payload(
            tool_issuer=tool_issuer,
            client_id=client_id,
            nonce=nonce,
            deployment_id=deployment_id,
            content_items=[build_resource_link_item(template, launch_url)],
            issued_at=issued_at,
            data=settings.data,
        )
        options.append(
            DeepLinkOption(
                badge_template_id=template.id,
                title=template.title,
                description=template.description,
                launch_url=launch_url,
                response_token=unsigned_compact_token(payload),
            )
        )

    return options

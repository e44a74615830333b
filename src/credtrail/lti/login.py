"""
OIDC third-party login initiation.

The platform starts a launch by sending ``iss``, ``login_hint`` and
``target_link_uri`` (plus optional hints) to the login endpoint; the tool
answers with a redirect to the platform's authorization endpoint carrying
a signed state and a fresh nonce.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import (
    LTI_OIDC_PROMPT,
    LTI_OIDC_RESPONSE_MODE,
    LTI_OIDC_RESPONSE_TYPE,
    LTI_OIDC_SCOPE,
)
from .errors import LtiBadRequest
from .registry import IssuerRegistryEntry
from .urls import is_absolute_http_url, set_query_params


class LoginInitiation(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, str_strip_whitespace=True)

    iss: str = Field(min_length=1)
    login_hint: str = Field(min_length=1)
    target_link_uri: str = Field(min_length=1)
    client_id: str | None = None
    lti_message_hint: str | None = None
    lti_deployment_id: str | None = None

    @field_validator("client_id", "lti_message_hint", "lti_deployment_id", mode="before")
    @classmethod
    def _blank_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("target_link_uri")
    @classmethod
    def _absolute_target(cls, value: str) -> str:
        if not is_absolute_http_url(value):
            raise ValueError("target_link_uri must be an absolute http(s) URL")
        return value


def parse_login_initiation(request_data: dict[str, Any]) -> LoginInitiation:
    try:
        return LoginInitiation.model_validate(request_data)
    except ValidationError as exc:
        raise LtiBadRequest("Invalid LTI OIDC login initiation request") from exc


def authorization_redirect_url(
    entry: IssuerRegistryEntry,
    login: LoginInitiation,
    *,
    redirect_uri: str,
    state: str,
    nonce: str,
) -> str:
    """Authorization request URL; existing query params on the endpoint are kept."""
    params = {
        "scope": LTI_OIDC_SCOPE,
        "response_type": LTI_OIDC_RESPONSE_TYPE,
        "response_mode": LTI_OIDC_RESPONSE_MODE,
        "prompt": LTI_OIDC_PROMPT,
        "client_id": entry.client_id,
        "redirect_uri": redirect_uri,
        "login_hint": login.login_hint,
        "state": state,
        "nonce": nonce,
    }
    if login.lti_message_hint is not None:
        params["lti_message_hint"] = login.lti_message_hint
    if login.lti_deployment_id is not None:
        params["lti_deployment_id"] = login.lti_deployment_id
    return set_query_params(entry.authorization_endpoint, params)

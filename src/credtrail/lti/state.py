"""
Signed, time-bounded OIDC ``state`` values.

The state carries the login-initiation context (issuer, client id, nonce,
hints) through the platform's authorization redirect and back to the launch
callback.  Nothing is stored server-side: the token is
``b64url(json(payload)).b64url(mac)`` and is validated on return.

The MAC is keyed HMAC-SHA256 over the encoded payload.  Tokens minted by the
older ``sha256(payload + "." + secret)`` digest do not validate.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .constants import LTI_STATE_CLOCK_SKEW_SECONDS, LTI_STATE_TTL_SECONDS
from .tokens import base64url_encode, decode_json_segment, encode_json_segment


class LtiStatePayload(BaseModel):
    """Login context round-tripped through the platform. JSON keys are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    iss: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    nonce: str = Field(min_length=1)
    login_hint: str = Field(min_length=1)
    target_link_uri: str = Field(min_length=1)
    lti_message_hint: str | None = None
    lti_deployment_id: str | None = None
    issued_at: AwareDatetime
    expires_at: AwareDatetime

    @classmethod
    def issue(
        cls,
        *,
        iss: str,
        client_id: str,
        nonce: str,
        login_hint: str,
        target_link_uri: str,
        now: datetime,
        lti_message_hint: str | None = None,
        lti_deployment_id: str | None = None,
        ttl_seconds: int = LTI_STATE_TTL_SECONDS,
    ) -> LtiStatePayload:
        return cls(
            iss=iss,
            client_id=client_id,
            nonce=nonce,
            login_hint=login_hint,
            target_link_uri=target_link_uri,
            lti_message_hint=lti_message_hint,
            lti_deployment_id=lti_deployment_id,
            issued_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )


@dataclass(frozen=True)
class StateValid:
    payload: LtiStatePayload
    status: Literal["ok"] = "ok"


@dataclass(frozen=True)
class StateInvalid:
    reason: str
    status: Literal["invalid"] = "invalid"


StateValidationResult = StateValid | StateInvalid


def _state_mac(encoded_payload: str, secret: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"), encoded_payload.encode("utf-8"), hashlib.sha256
    ).digest()
    return base64url_encode(digest)


def sign_state(payload: LtiStatePayload, secret: str) -> str:
    encoded = encode_json_segment(
        payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    )
    return f"{encoded}.{_state_mac(encoded, secret)}"


def validate_state(token: str, secret: str, now: datetime) -> StateValidationResult:
    """
    Validate a state token against *secret* at time *now*.

    Checks run in a fixed order and the first failure wins:

    1. exactly two dot-separated segments
    2. MAC matches
    3. payload is a JSON object with every required field and ISO timestamps
    4. ``issuedAt`` is not more than 30 seconds ahead of *now*
    5. *now* is strictly before ``expiresAt``

    Never raises; failures come back as :class:`StateInvalid` with a reason
    suitable for the error response.
    """
    segments = token.strip().split(".")
    if len(segments) != 2 or not all(segments):
        return StateInvalid("state must have exactly two segments")

    encoded_payload, mac = segments
    expected_mac = _state_mac(encoded_payload, secret)
    if not hmac.compare_digest(mac.encode("utf-8"), expected_mac.encode("utf-8")):
        return StateInvalid("state signature mismatch")

    raw_payload = decode_json_segment(encoded_payload)
    if raw_payload is None:
        return StateInvalid("state payload is not valid JSON")

    try:
        payload = LtiStatePayload.model_validate(raw_payload)
    except ValidationError:
        return StateInvalid("state payload is missing required fields or has invalid timestamps")

    if payload.issued_at > now + timedelta(seconds=LTI_STATE_CLOCK_SKEW_SECONDS):
        return StateInvalid("state issuedAt is in the future")

    if now >= payload.expires_at:
        return StateInvalid("state has expired")

    return StateValid(payload)

"""
Token codec: base64url JSON segments and compact three-part tokens.

Decoding never raises; malformed input yields ``None`` so callers can turn
it into a specific 400 reason.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(segment: str) -> bytes | None:
    if not segment:
        return None
    try:
        padded = segment + "=" * (-len(segment) % 4)
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError):
        return None


def encode_json_segment(value: dict[str, Any]) -> str:
    return base64url_encode(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def decode_json_segment(segment: str) -> dict[str, Any] | None:
    """
    Decode a base64url JSON segment. Only JSON objects are accepted.

    ``NaN`` and ``Infinity`` are not JSON and are rejected like any other
    syntax error.
    """
    raw = base64url_decode(segment)
    if raw is None:
        return None
    try:
        value = json.loads(raw.decode("utf-8"), parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def unsigned_compact_token(payload: dict[str, Any]) -> str:
    """
    Build ``b64(header).b64(payload).`` with ``alg=none``.

    Only used for deep-linking responses; LMS platforms that verify response
    signatures will reject these.
    """
    header = encode_json_segment({"alg": "none", "typ": "JWT"})
    return f"{header}.{encode_json_segment(payload)}."


def parse_compact_token(token: str) -> tuple[dict[str, Any], dict[str, Any]] | None:
    """Return ``(header, payload)`` of a three-part compact token, or None if malformed."""
    segments = token.strip().split(".")
    if len(segments) != 3:
        return None

    header = decode_json_segment(segments[0])
    payload = decode_json_segment(segments[1])
    if header is None or payload is None:
        return None
    return header, payload

"""
Logging configuration and the error-tracking sink.

Operator-actionable failures (registry misconfiguration, identity linking
conflicts, persistence errors) are reported through :func:`capture_exception`,
which forwards to Sentry and logs the traceback locally.  Callers pass claim
context as ``extra``; signing secrets, raw tokens and nonces never go in.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import sentry_sdk

from credtrail.settings import Settings

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def init_error_tracking(settings: Settings) -> bool:
    """Initialise the Sentry client. Returns False when no DSN is configured."""
    if not settings.sentry_dsn:
        logger.info("CREDTRAIL_SENTRY_DSN not set, error tracking is log-only")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.env,
        send_default_pii=False,
    )
    return True


def capture_exception(
    error: BaseException,
    *,
    message: str,
    tags: Mapping[str, str] | None = None,
    extra: Mapping[str, Any] | None = None,
) -> None:
    """Report *error* with request tags and claim context."""
    logger.error(
        "%s: %s (tags=%s extra=%s)",
        message,
        error,
        dict(tags or {}),
        dict(extra or {}),
        exc_info=error,
    )

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("component", "lti")
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        scope.set_extra("message", message)
        sentry_sdk.capture_exception(error)

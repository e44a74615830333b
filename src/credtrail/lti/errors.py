"""
Typed HTTP failures for the LTI login and launch endpoints.

Every rejection carries a specific reason string so LMS administrators can
tell a replayed nonce from an expired state from a misconfigured issuer.
"""

from __future__ import annotations

from fastapi import HTTPException


class LtiLaunchError(HTTPException):
    """A terminal launch failure; rendered as ``{"detail": reason}``."""

    def __init__(self, status_code: int, reason: str):
        super().__init__(status_code=status_code, detail=reason)
        self.reason = reason


class LtiBadRequest(LtiLaunchError):
    def __init__(self, reason: str):
        super().__init__(400, reason)


class LtiForbidden(LtiLaunchError):
    def __init__(self, reason: str):
        super().__init__(403, reason)


class LtiNotImplemented(LtiLaunchError):
    def __init__(self, reason: str):
        super().__init__(501, reason)


class LtiServerError(LtiLaunchError):
    def __init__(self, reason: str):
        super().__init__(500, reason)


class IssuerRegistryConfigError(ValueError):
    """The static issuer registry cannot be parsed. A deployment bug, not a client error."""


class IdentityConflictError(RuntimeError):
    """An alias claim is already linked to a different learner profile."""

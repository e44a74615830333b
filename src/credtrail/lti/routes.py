"""
LTI 1.3 endpoints.

GET|POST /v1/lti/oidc/login  - OIDC third-party login initiation -> 302 to the platform
POST     /v1/lti/launch      - id_token + state callback -> session + HTML page
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from credtrail.database import get_session
from credtrail.observability import capture_exception
from credtrail.services.badge_template_service import list_badge_templates
from credtrail.settings import Settings, get_settings

from .claims import ValidatedLaunch, validate_launch
from .deep_linking import build_deep_link_options
from .errors import (
    IdentityConflictError,
    LtiBadRequest,
    LtiLaunchError,
    LtiServerError,
)
from .linking import LinkConflict, federated_subject, link_launch_identity
from .login import authorization_redirect_url, parse_login_initiation
from .nrps import parse_names_role_service_claim
from .pages import deep_link_selection_page, launch_result_page
from .registry import IssuerRegistry, IssuerRegistryEntry, resolve_issuer_registry
from .sessions import generate_opaque_token, issue_session, set_session_cookie
from .state import LtiStatePayload, StateInvalid, sign_state, validate_state
from .urls import normalize_issuer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/lti", tags=["lti"])


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _is_secure(request: Request) -> bool:
    """Check if request is HTTPS (direct or behind a TLS-terminating proxy)."""
    if request.url.scheme == "https":
        return True
    return request.headers.get("x-forwarded-proto", "") == "https"


def _request_origin(request: Request) -> str:
    scheme = "https" if _is_secure(request) else request.url.scheme
    return f"{scheme}://{request.url.netloc}"


async def _get_request_data(request: Request) -> dict:
    """Extract params from GET or POST request."""
    if request.method == "GET":
        return dict(request.query_params)
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


async def _load_registry(request: Request, settings: Settings) -> IssuerRegistry:
    """Static config merged with DB registrations; any failure is a reported 500."""
    try:
        async with get_session() as session:
            return await resolve_issuer_registry(session, settings)
    except Exception as exc:
        capture_exception(
            exc,
            message="LTI issuer registry configuration is invalid",
            tags={"path": request.url.path, "method": request.method},
        )
        raise LtiServerError("LTI issuer registry configuration is invalid") from exc


@router.api_route("/oidc/login", methods=["GET", "POST"])
async def lti_oidc_login(request: Request):
    """
    OIDC-initiated login.

    Called by the platform when a user opens a CredTrail link.  Resolves the
    issuer, mints a nonce and signed state, and redirects to the platform's
    authorization endpoint.
    """
    settings = get_settings()
    registry = await _load_registry(request, settings)

    request_data = await _get_request_data(request)
    login = parse_login_initiation(request_data)

    entry = registry.get(normalize_issuer(login.iss))
    if entry is None:
        logger.warning("OIDC login from unregistered issuer %s", login.iss)
        raise LtiBadRequest("Unknown LTI issuer")

    if login.client_id is not None and login.client_id != entry.client_id:
        logger.warning("OIDC login client_id mismatch for issuer %s", entry.issuer)
        raise LtiBadRequest("client_id does not match configured issuer registration")

    nonce = generate_opaque_token()
    state = LtiStatePayload.issue(
        iss=entry.issuer,
        client_id=entry.client_id,
        nonce=nonce,
        login_hint=login.login_hint,
        target_link_uri=login.target_link_uri,
        lti_message_hint=login.lti_message_hint,
        lti_deployment_id=login.lti_deployment_id,
        now=_utcnow(),
    )

    location = authorization_redirect_url(
        entry,
        login,
        redirect_uri=_request_origin(request) + request.url_for("lti_launch").path,
        state=sign_state(state, settings.state_signing_secret()),
        nonce=nonce,
    )
    logger.info(
        "OIDC login redirect for issuer %s (client %s, deployment %s)",
        entry.issuer,
        entry.client_id,
        login.lti_deployment_id or "-",
    )
    return RedirectResponse(location, status_code=302)


@router.post("/launch")
async def lti_launch(request: Request):
    """
    LTI launch callback.

    Called by the platform with the form-posted ``id_token`` and ``state``.
    Validates both, links the launch to a local learner and user, issues a
    session cookie, and renders either the completion page or the
    deep-linking selection page.
    """
    settings = get_settings()
    request_data = await _get_request_data(request)

    id_token = request_data.get("id_token", "").strip()
    if not id_token:
        raise LtiBadRequest("id_token is required")
    state_token = request_data.get("state", "").strip()
    if not state_token:
        raise LtiBadRequest("state is required")

    registry = await _load_registry(request, settings)

    now = _utcnow()
    try:
        launch, entry = _validate(id_token, state_token, registry, settings, now)
    except LtiLaunchError as exc:
        logger.warning("LTI launch rejected (%s): %s", exc.status_code, exc.reason)
        raise

    claims = launch.claims
    tenant_id = entry.tenant_id
    subject = federated_subject(claims.iss, claims.sub)
    logger.info(
        "LTI launch accepted: issuer=%s deployment=%s subject=%s message_type=%s role=%s",
        claims.iss,
        claims.deployment_id,
        claims.sub,
        claims.message_type,
        launch.role_kind,
    )
    nrps = parse_names_role_service_claim(claims)
    if nrps is not None:
        logger.debug("NRPS memberships endpoint advertised for %s", subject)

    try:
        async with get_session() as session:
            outcome = await link_launch_identity(
                session, tenant_id=tenant_id, claims=claims, role_kind=launch.role_kind
            )
            if isinstance(outcome, LinkConflict):
                raise IdentityConflictError(outcome.reason)
            issued = await issue_session(
                session,
                tenant_id=tenant_id,
                user_id=outcome.user_id,
                now=now,
                ttl_seconds=settings.session_ttl_seconds,
            )
    except Exception as exc:
        capture_exception(
            exc,
            message="LTI launch could not be linked to a local user or session",
            tags={"tenant_id": tenant_id},
            extra={
                "issuer": claims.iss,
                "deploymentId": claims.deployment_id,
                "subjectId": claims.sub,
            },
        )
        raise LtiServerError("Unable to link LTI launch to local account") from exc

    if launch.deep_linking is not None:
        try:
            async with get_session() as session:
                templates = await list_badge_templates(session, tenant_id)
        except Exception as exc:
            capture_exception(
                exc,
                message="Badge templates could not be listed for deep linking",
                tags={"tenant_id": tenant_id},
            )
            raise LtiServerError("Unable to load badge templates for deep linking") from exc
        options = build_deep_link_options(
            templates,
            settings=launch.deep_linking,
            target_link_uri=launch.target_link_uri,
            tool_issuer=_request_origin(request),
            client_id=entry.client_id,
            nonce=claims.nonce,
            deployment_id=claims.deployment_id,
            now=now,
        )
        html = deep_link_selection_page(
            issuer=claims.iss,
            deployment_id=claims.deployment_id,
            tenant_id=tenant_id,
            user_id=outcome.user_id,
            membership_role=outcome.membership_role,
            deep_link_return_url=launch.deep_linking.deep_link_return_url,
            target_link_uri=launch.target_link_uri,
            options=options,
        )
    else:
        html = launch_result_page(
            role_kind=launch.role_kind,
            issuer=claims.iss,
            deployment_id=claims.deployment_id,
            tenant_id=tenant_id,
            user_id=outcome.user_id,
            membership_role=outcome.membership_role,
            learner_profile_id=outcome.learner_profile_id,
            subject=claims.sub,
            message_type=claims.message_type,
            target_link_uri=launch.target_link_uri,
            nrps_memberships_url=nrps.context_memberships_url if nrps else None,
        )

    response = HTMLResponse(content=html)
    response.headers["Cache-Control"] = "no-store"
    set_session_cookie(response, issued.session_token, settings)
    return response


def _validate(
    id_token: str,
    state_token: str,
    registry: IssuerRegistry,
    settings: Settings,
    now: datetime,
) -> tuple[ValidatedLaunch, IssuerRegistryEntry]:
    result = validate_state(state_token, settings.state_signing_secret(), now)
    if isinstance(result, StateInvalid):
        raise LtiBadRequest(f"Invalid launch state: {result.reason}")

    entry = registry.get(normalize_issuer(result.payload.iss))
    if entry is None:
        raise LtiBadRequest("No issuer registration configured for state.iss")

    launch = validate_launch(
        id_token,
        state=result.payload,
        issuer_entry=entry,
        now=now,
        unsigned_permitted=settings.unsigned_id_tokens_permitted,
    )
    return launch, entry

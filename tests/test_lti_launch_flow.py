"""
End-to-end tests for the LTI 1.3 endpoints.

Each launch goes through the real login endpoint first so the state token
and nonce come from the service itself.
"""

import re
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import select

from credtrail.lti.constants import (
    LTI_CLAIM_DEEP_LINKING_CONTENT_ITEMS,
    LTI_CLAIM_DEEP_LINKING_DATA,
    LTI_CLAIM_NRPS_NAMES_ROLE_SERVICE,
    LTI_MESSAGE_TYPE_DEEP_LINKING_REQUEST,
)
from credtrail.lti.sessions import hash_session_token
from credtrail.lti.tokens import parse_compact_token
from credtrail.models.learner import IdentityType, LearnerIdentityModel, LearnerProfileModel
from credtrail.models.tenancy import MembershipRole, SessionModel, TenantMembershipModel, UserModel
from credtrail.services.badge_template_service import create_badge_template
from credtrail.services.identity_service import resolve_learner_profile_for_identity
from credtrail.services.registration_service import upsert_lti_issuer_registration

from conftest import (
    AUTHORIZATION_ENDPOINT,
    CLIENT_ID,
    DEPLOYMENT_ID,
    ISSUER,
    LEARNER_ROLE,
    TARGET_LINK_URI,
    TENANT_ID,
    registry_json,
)

LOGIN_PATH = "/v1/lti/oidc/login"
LAUNCH_PATH = "/v1/lti/launch"
RETURN_URL = "https://canvas.example.edu/courses/1/deep_linking_response"


async def _login(client, **overrides) -> dict[str, str]:
    params = {
        "iss": ISSUER,
        "login_hint": "login-hint-1",
        "target_link_uri": TARGET_LINK_URI,
        "lti_deployment_id": DEPLOYMENT_ID,
        **overrides,
    }
    response = await client.get(LOGIN_PATH, params=params)
    assert response.status_code == 302, response.text
    query = parse_qs(urlsplit(response.headers["location"]).query)
    return {key: values[0] for key, values in query.items()}


async def _launch(client, build_claims, build_id_token, **claim_overrides):
    redirect = await _login(client)
    claims = build_claims(redirect["nonce"], **claim_overrides)
    return await client.post(
        LAUNCH_PATH, data={"id_token": build_id_token(claims), "state": redirect["state"]}
    )


# ---------------------------------------------------------------------------
# OIDC login initiation
# ---------------------------------------------------------------------------


class TestOidcLogin:
    async def test_get_redirects_to_authorization_endpoint(self, client):
        response = await client.get(
            LOGIN_PATH,
            params={
                "iss": ISSUER,
                "login_hint": "login-hint-1",
                "target_link_uri": TARGET_LINK_URI,
                "lti_message_hint": "message-hint-1",
                "client_id": CLIENT_ID,
            },
        )

        assert response.status_code == 302
        location = urlsplit(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == AUTHORIZATION_ENDPOINT

        query = parse_qs(location.query)
        assert query["scope"] == ["openid"]
        assert query["response_type"] == ["id_token"]
        assert query["response_mode"] == ["form_post"]
        assert query["prompt"] == ["none"]
        assert query["client_id"] == [CLIENT_ID]
        assert query["redirect_uri"] == ["http://test/v1/lti/launch"]
        assert query["login_hint"] == ["login-hint-1"]
        assert query["lti_message_hint"] == ["message-hint-1"]
        assert "lti_deployment_id" not in query
        assert query["nonce"][0]
        assert query["state"][0].count(".") == 1

    async def test_post_form_is_accepted(self, client):
        response = await client.post(
            LOGIN_PATH,
            data={"iss": ISSUER, "login_hint": "h", "target_link_uri": TARGET_LINK_URI},
        )
        assert response.status_code == 302

    async def test_forwarded_https_redirect_uri(self, client):
        response = await client.get(
            LOGIN_PATH,
            params={"iss": ISSUER, "login_hint": "h", "target_link_uri": TARGET_LINK_URI},
            headers={"x-forwarded-proto": "https"},
        )
        query = parse_qs(urlsplit(response.headers["location"]).query)
        assert query["redirect_uri"] == ["https://test/v1/lti/launch"]

    async def test_each_login_gets_fresh_nonce(self, client):
        first = await _login(client)
        second = await _login(client)
        assert first["nonce"] != second["nonce"]
        assert first["state"] != second["state"]

    @pytest.mark.parametrize(
        "params",
        [
            {"iss": ISSUER},
            {"iss": ISSUER, "login_hint": "h"},
            {"iss": ISSUER, "login_hint": "h", "target_link_uri": "/relative"},
            {"login_hint": "h", "target_link_uri": TARGET_LINK_URI},
        ],
    )
    async def test_missing_or_invalid_params(self, client, params):
        response = await client.get(LOGIN_PATH, params=params)
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid LTI OIDC login initiation request"

    async def test_unknown_issuer(self, client):
        response = await client.get(
            LOGIN_PATH,
            params={
                "iss": "https://moodle.example.edu",
                "login_hint": "h",
                "target_link_uri": TARGET_LINK_URI,
            },
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Unknown LTI issuer"

    async def test_issuer_lookup_is_normalized(self, client):
        redirect = await _login(client, iss="HTTPS://Canvas.Example.edu:443/")
        assert redirect["client_id"] == CLIENT_ID

    async def test_client_id_mismatch(self, client):
        response = await client.get(
            LOGIN_PATH,
            params={
                "iss": ISSUER,
                "login_hint": "h",
                "target_link_uri": TARGET_LINK_URI,
                "client_id": "someone-else",
            },
        )
        assert response.status_code == 400
        assert response.json()["detail"] == (
            "client_id does not match configured issuer registration"
        )

    async def test_database_registration_overrides_static(self, client, session_factory):
        async with session_factory() as session:
            await upsert_lti_issuer_registration(
                session,
                issuer=ISSUER,
                tenant_id="tenant_db",
                authorization_endpoint="https://canvas.example.edu/db/authorize",
                client_id="db-client",
                allow_unsigned_id_token=True,
            )
            await session.commit()

        redirect = await _login(client)
        mismatch = await client.get(
            LOGIN_PATH,
            params={
                "iss": ISSUER,
                "login_hint": "h",
                "target_link_uri": TARGET_LINK_URI,
                "client_id": CLIENT_ID,
            },
        )

        assert redirect["client_id"] == "db-client"
        assert mismatch.status_code == 400

    async def test_invalid_registry_json(self, client, test_settings):
        test_settings.lti_issuer_registry_json = "{not json"

        with patch("credtrail.lti.routes.capture_exception") as captured:
            response = await client.get(
                LOGIN_PATH,
                params={"iss": ISSUER, "login_hint": "h", "target_link_uri": TARGET_LINK_URI},
            )

        assert response.status_code == 500
        assert response.json()["detail"] == "LTI issuer registry configuration is invalid"
        captured.assert_called_once()

    async def test_registry_read_failure_is_reported(self, client):
        with (
            patch(
                "credtrail.lti.routes.resolve_issuer_registry",
                side_effect=RuntimeError("db down"),
            ),
            patch("credtrail.lti.routes.capture_exception") as captured,
        ):
            response = await client.get(
                LOGIN_PATH,
                params={"iss": ISSUER, "login_hint": "h", "target_link_uri": TARGET_LINK_URI},
            )

        assert response.status_code == 500
        assert response.json()["detail"] == "LTI issuer registry configuration is invalid"
        captured.assert_called_once()
        assert captured.call_args.kwargs["tags"] == {"path": LOGIN_PATH, "method": "GET"}


# ---------------------------------------------------------------------------
# Resource link launches
# ---------------------------------------------------------------------------


class TestResourceLinkLaunch:
    async def test_instructor_launch(self, client, build_claims, build_id_token, session_factory):
        response = await _launch(client, build_claims, build_id_token)

        assert response.status_code == 200, response.text
        assert "LTI 1.3 launch complete" in response.text
        assert "Launch accepted for <strong>Instructor</strong>" in response.text
        assert f"/tenants/{TENANT_ID}/learner/dashboard" in response.text
        assert response.headers["cache-control"] == "no-store"

        cookie = response.headers["set-cookie"]
        match = re.match(r"credtrail_session=([^;]+);", cookie)
        assert match
        assert "HttpOnly" in cookie

        async with session_factory() as session:
            stored = (await session.execute(select(SessionModel))).scalars().one()
            membership = (await session.execute(select(TenantMembershipModel))).scalars().one()

        assert stored.session_token_hash == hash_session_token(match.group(1))
        assert stored.tenant_id == TENANT_ID
        assert membership.user_id == stored.user_id
        assert membership.role == MembershipRole.ISSUER

    async def test_learner_launch_links_aliases(
        self, client, build_claims, build_id_token, session_factory
    ):
        response = await _launch(
            client,
            build_claims,
            build_id_token,
            roles=[LEARNER_ROLE],
            email="Learner@Example.edu",
            sourced_id="sis-42",
            name="Ada Learner",
        )

        assert response.status_code == 200, response.text
        assert "Launch accepted for <strong>Learner</strong>" in response.text

        async with session_factory() as session:
            user = (await session.execute(select(UserModel))).scalars().one()
            identities = (await session.execute(select(LearnerIdentityModel))).scalars().all()
            membership = (await session.execute(select(TenantMembershipModel))).scalars().one()

        assert user.email == "learner@example.edu"
        assert membership.role == MembershipRole.VIEWER
        assert {(i.identity_type, i.identity_value) for i in identities} == {
            (IdentityType.SAML_SUBJECT, f"{ISSUER}::canvas-user-123"),
            (IdentityType.EMAIL, "learner@example.edu"),
            (IdentityType.SOURCED_ID, "sis-42"),
        }

    async def test_nrps_endpoint_is_shown(self, client, build_claims, build_id_token):
        memberships_url = "https://canvas.example.edu/api/lti/courses/1/names_and_roles"
        response = await _launch(
            client,
            build_claims,
            build_id_token,
            **{
                LTI_CLAIM_NRPS_NAMES_ROLE_SERVICE: {
                    "context_memberships_url": memberships_url,
                    "service_versions": ["2.0"],
                }
            },
        )

        assert response.status_code == 200, response.text
        assert "NRPS memberships URL" in response.text
        assert memberships_url in response.text

    async def test_repeat_launch_reuses_profile(
        self, client, build_claims, build_id_token, session_factory
    ):
        first = await _launch(client, build_claims, build_id_token, email="learner@example.edu")
        second = await _launch(client, build_claims, build_id_token, email="learner@example.edu")

        assert first.status_code == second.status_code == 200
        async with session_factory() as session:
            profiles = (await session.execute(select(LearnerProfileModel))).scalars().all()
            sessions = (await session.execute(select(SessionModel))).scalars().all()

        assert len(profiles) == 1
        assert len(sessions) == 2

    async def test_identity_conflict_is_reported(
        self, client, build_claims, build_id_token, session_factory
    ):
        async with session_factory() as session:
            await resolve_learner_profile_for_identity(
                session, TENANT_ID, IdentityType.EMAIL, "taken@example.edu"
            )
            await session.commit()

        with patch("credtrail.lti.routes.capture_exception") as captured:
            response = await _launch(client, build_claims, build_id_token, email="taken@example.edu")

        assert response.status_code == 500
        assert response.json()["detail"] == "Unable to link LTI launch to local account"
        assert "set-cookie" not in response.headers
        captured.assert_called_once()
        assert captured.call_args.kwargs["tags"] == {"tenant_id": TENANT_ID}
        assert captured.call_args.kwargs["extra"]["subjectId"] == "canvas-user-123"

        async with session_factory() as session:
            assert (await session.execute(select(SessionModel))).scalars().all() == []
            assert (await session.execute(select(UserModel))).scalars().all() == []


# ---------------------------------------------------------------------------
# Deep linking
# ---------------------------------------------------------------------------


def _deep_linking_claims(**overrides) -> dict:
    return {
        "message_type": LTI_MESSAGE_TYPE_DEEP_LINKING_REQUEST,
        "resource_link_id": None,
        "deep_linking_settings": {
            "deep_link_return_url": RETURN_URL,
            "accept_types": ["ltiResourceLink"],
            "data": "platform-data",
        },
        **overrides,
    }


class TestDeepLinkingLaunch:
    async def test_selection_page_offers_templates(
        self, client, build_claims, build_id_token, session_factory
    ):
        async with session_factory() as session:
            await create_badge_template(
                session, TENANT_ID, "data", "Data Literacy", template_id="btp-data"
            )
            await session.commit()

        response = await _launch(client, build_claims, build_id_token, **_deep_linking_claims())

        assert response.status_code == 200, response.text
        assert "Select badge template placement" in response.text
        assert f'<form method="post" action="{RETURN_URL}">' in response.text
        assert "credtrail_session=" in response.headers["set-cookie"]

        (token,) = re.findall(r'name="JWT" value="([^"]+)"', response.text)
        header, payload = parse_compact_token(token)
        (item,) = payload[LTI_CLAIM_DEEP_LINKING_CONTENT_ITEMS]

        assert header["alg"] == "none"
        assert payload["iss"] == "http://test"
        assert payload["aud"] == CLIENT_ID
        assert payload[LTI_CLAIM_DEEP_LINKING_DATA] == "platform-data"
        assert item["url"] == f"{TARGET_LINK_URI}?badgeTemplateId=btp-data"
        assert item["custom"] == {"badgeTemplateId": "btp-data"}

    async def test_no_templates(self, client, build_claims, build_id_token):
        response = await _launch(client, build_claims, build_id_token, **_deep_linking_claims())

        assert response.status_code == 200
        assert "No active badge templates are available for this tenant." in response.text

    async def test_learner_cannot_deep_link(self, client, build_claims, build_id_token):
        with patch("credtrail.lti.routes.list_badge_templates") as listed:
            response = await _launch(
                client, build_claims, build_id_token, **_deep_linking_claims(roles=[LEARNER_ROLE])
            )

        assert response.status_code == 403
        assert response.json()["detail"] == "LtiDeepLinkingRequest requires instructor role"
        listed.assert_not_called()

    async def test_template_listing_failure_is_reported(
        self, client, build_claims, build_id_token
    ):
        with (
            patch(
                "credtrail.lti.routes.list_badge_templates",
                side_effect=RuntimeError("templates unavailable"),
            ),
            patch("credtrail.lti.routes.capture_exception") as captured,
        ):
            response = await _launch(
                client, build_claims, build_id_token, **_deep_linking_claims()
            )

        assert response.status_code == 500
        assert response.json()["detail"] == "Unable to load badge templates for deep linking"
        captured.assert_called_once()
        assert captured.call_args.kwargs["tags"] == {"tenant_id": TENANT_ID}


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


class TestLaunchRejections:
    async def test_id_token_required(self, client):
        response = await client.post(LAUNCH_PATH, data={"state": "a.b"})
        assert response.status_code == 400
        assert response.json()["detail"] == "id_token is required"

    async def test_state_required(self, client, build_claims, build_id_token):
        response = await client.post(
            LAUNCH_PATH, data={"id_token": build_id_token(build_claims())}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "state is required"

    async def test_tampered_state(self, client, build_claims, build_id_token):
        redirect = await _login(client)
        payload_segment, _ = redirect["state"].split(".")

        response = await client.post(
            LAUNCH_PATH,
            data={
                "id_token": build_id_token(build_claims(redirect["nonce"])),
                "state": f"{payload_segment}.forged",
            },
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid launch state: state signature mismatch"

    async def test_nonce_mismatch(self, client, build_claims, build_id_token):
        redirect = await _login(client)
        response = await client.post(
            LAUNCH_PATH,
            data={
                "id_token": build_id_token(build_claims("replayed-nonce")),
                "state": redirect["state"],
            },
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "id_token nonce does not match launch state nonce"

    async def test_deployment_mismatch(self, client, build_claims, build_id_token):
        response = await _launch(client, build_claims, build_id_token, deployment_id="other")

        assert response.status_code == 400
        assert response.json()["detail"] == (
            "id_token deployment_id does not match launch initiation"
        )

    async def test_signature_verification_required(
        self, client, build_claims, build_id_token, test_settings
    ):
        test_settings.lti_issuer_registry_json = registry_json(allowUnsignedIdToken=False)

        response = await _launch(client, build_claims, build_id_token)

        assert response.status_code == 501
        assert response.json()["detail"].startswith(
            "LTI issuer requires signature verification configuration"
        )

    async def test_registration_removed_after_login(
        self, client, build_claims, build_id_token, test_settings
    ):
        redirect = await _login(client)
        test_settings.lti_issuer_registry_json = ""

        response = await client.post(
            LAUNCH_PATH,
            data={
                "id_token": build_id_token(build_claims(redirect["nonce"])),
                "state": redirect["state"],
            },
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "No issuer registration configured for state.iss"

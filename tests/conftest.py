"""
Shared test fixtures for the CredTrail LTI tests.

Fixtures:
  - test_settings:    Settings(env="test") with a static registry for the Canvas test issuer
  - async_engine:     SQLAlchemy engine (in-memory SQLite unless CREDTRAIL_TEST_DATABASE_URL)
  - async_session:    Per-test DB session (rolled back)
  - session_factory:  async_sessionmaker patched into credtrail.database
  - app:              FastAPI app with patched DB + settings
  - client:           httpx.AsyncClient for the test app
  - build_claims:     Factory for LTI 1.3 id_token payloads
  - build_id_token:   Factory for compact id_tokens (signature never checked)
"""

from __future__ import annotations

import json
import os
import time
from collections.abc import AsyncGenerator
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from credtrail.lti.constants import (
    LTI_CLAIM_DEEP_LINKING_SETTINGS,
    LTI_CLAIM_DEPLOYMENT_ID,
    LTI_CLAIM_LIS,
    LTI_CLAIM_MESSAGE_TYPE,
    LTI_CLAIM_RESOURCE_LINK,
    LTI_CLAIM_ROLES,
    LTI_CLAIM_TARGET_LINK_URI,
    LTI_CLAIM_VERSION,
    LTI_MESSAGE_TYPE_RESOURCE_LINK_REQUEST,
)
from credtrail.lti.tokens import encode_json_segment
from credtrail.models import Base
from credtrail.settings import Settings, clear_settings_cache

TEST_DATABASE_URL = os.environ.get(
    "CREDTRAIL_TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:"
)

ISSUER = "https://canvas.example.edu"
CLIENT_ID = "canvas-client-123"
TENANT_ID = "tenant_123"
AUTHORIZATION_ENDPOINT = "https://canvas.example.edu/api/lti/authorize_redirect"
TARGET_LINK_URI = "https://tool.example.edu/v1/lti/launch"
DEPLOYMENT_ID = "deployment-1"
SUBJECT = "canvas-user-123"

INSTRUCTOR_ROLE = "http://purl.imsglobal.org/vocab/lis/v2/membership#Instructor"
LEARNER_ROLE = "http://purl.imsglobal.org/vocab/lis/v2/membership#Learner"


def registry_json(**overrides) -> str:
    """Static registry JSON with the Canvas test issuer; overrides apply to its entry."""
    entry = {
        "tenantId": TENANT_ID,
        "authorizationEndpoint": AUTHORIZATION_ENDPOINT,
        "clientId": CLIENT_ID,
        "allowUnsignedIdToken": True,
        **overrides,
    }
    return json.dumps({ISSUER: entry})


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    clear_settings_cache()
    return Settings(
        env="test",
        database_url=TEST_DATABASE_URL,
        lti_issuer_registry_json=registry_json(),
        lti_state_signing_secret="test-state-signing-secret",
        sentry_dsn="",
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory DB
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    else:
        engine = create_async_engine(TEST_DATABASE_URL, pool_pre_ping=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def async_session(async_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def session_factory(
    async_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------


def _build_test_app():
    """Build a FastAPI app around the LTI router (no real lifespan)."""
    from fastapi import FastAPI

    from credtrail.lti.routes import router as lti_router

    test_app = FastAPI(title="Test")
    test_app.include_router(lti_router)

    @test_app.get("/health")
    async def health():
        return {"status": "healthy"}

    return test_app


@pytest_asyncio.fixture(scope="function")
async def app(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator:
    with patch("credtrail.database._session_factory", session_factory), \
         patch("credtrail.settings.get_settings", return_value=test_settings), \
         patch("credtrail.lti.routes.get_settings", return_value=test_settings):
        yield _build_test_app()
    clear_settings_cache()


@pytest_asyncio.fixture(scope="function")
async def client(app) -> AsyncGenerator:
    from httpx import ASGITransport, AsyncClient

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# id_token builders
# ---------------------------------------------------------------------------


@pytest.fixture
def build_claims():
    """Factory fixture: build_claims(nonce=..., roles=[...], ...) -> payload dict."""

    def _build(
        nonce: str = "nonce-123",
        *,
        iss: str = ISSUER,
        sub: str = SUBJECT,
        aud: str | list[str] = CLIENT_ID,
        message_type: str = LTI_MESSAGE_TYPE_RESOURCE_LINK_REQUEST,
        roles: list[str] | None = None,
        deployment_id: str = DEPLOYMENT_ID,
        target_link_uri: str = TARGET_LINK_URI,
        resource_link_id: str | None = "resource-link-1",
        deep_linking_settings: dict | None = None,
        email: str | None = None,
        sourced_id: str | None = None,
        exp_offset: int = 300,
        iat_offset: int = 0,
        **extra,
    ) -> dict:
        now = int(time.time())
        payload = {
            "iss": iss,
            "sub": sub,
            "aud": aud,
            "exp": now + exp_offset,
            "iat": now + iat_offset,
            "nonce": nonce,
            LTI_CLAIM_DEPLOYMENT_ID: deployment_id,
            LTI_CLAIM_MESSAGE_TYPE: message_type,
            LTI_CLAIM_VERSION: "1.3.0",
            LTI_CLAIM_TARGET_LINK_URI: target_link_uri,
            LTI_CLAIM_ROLES: roles if roles is not None else [INSTRUCTOR_ROLE],
        }
        if resource_link_id is not None:
            payload[LTI_CLAIM_RESOURCE_LINK] = {"id": resource_link_id}
        if deep_linking_settings is not None:
            payload[LTI_CLAIM_DEEP_LINKING_SETTINGS] = deep_linking_settings
        if email is not None:
            payload["email"] = email
        if sourced_id is not None:
            payload[LTI_CLAIM_LIS] = {"person_sourcedid": sourced_id}
        payload.update(extra)
        return payload

    return _build


@pytest.fixture
def build_id_token():
    """Factory fixture: build_id_token(payload, alg="RS256") -> compact token string."""

    def _build(payload: dict, alg: str | None = "RS256") -> str:
        header = {"typ": "JWT", "kid": "test-key"}
        if alg is not None:
            header["alg"] = alg
        return f"{encode_json_segment(header)}.{encode_json_segment(payload)}.unverified-signature"

    return _build

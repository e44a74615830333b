"""
FastAPI application for the CredTrail LTI launch service.

The database pool and the error-tracking client are initialised in the
lifespan so connections are created in the server's event loop.
"""

from dotenv import load_dotenv

# Load .env file before any other imports that might need env vars
load_dotenv()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from credtrail import __version__
from credtrail.database import close_database, init_database
from credtrail.lti.routes import router as lti_router
from credtrail.observability import configure_logging, init_error_tracking
from credtrail.settings import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    - startup: logging, error tracking, database pool
    - shutdown: close database connections
    """
    settings = get_settings()
    configure_logging(settings)
    init_error_tracking(settings)

    await init_database()
    logger.info("Database pool initialized (env=%s)", settings.env)

    yield

    await close_database()
    logger.info("Database connections closed")


class CSPMiddleware(BaseHTTPMiddleware):
    """Allow launch pages to be framed by the configured LMS origins."""

    def __init__(self, app, frame_ancestors: str):
        super().__init__(app)
        self.frame_ancestors = frame_ancestors

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["Content-Security-Policy"] = f"frame-ancestors {self.frame_ancestors}"
        # CSP frame-ancestors takes precedence only without X-Frame-Options
        if "X-Frame-Options" in response.headers:
            del response.headers["X-Frame-Options"]
        return response


def get_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="CredTrail LTI",
        description="LTI 1.3 launch engine for CredTrail badge issuance",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(CSPMiddleware, frame_ancestors=settings.csp_frame_ancestors)

    app.include_router(lti_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = get_app()

"""
Engine and transaction scope for the launch service.

The engine belongs to the server's event loop, so it is built in the app
lifespan rather than at import.  Route handlers open one ``get_session()``
block per unit of work: registry read, account linking, template listing.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from credtrail.settings import get_settings

# Set by init_database(), cleared by close_database()
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_database() -> None:
    """Build the engine for ``CREDTRAIL_DATABASE_URL`` and its session factory."""
    global _engine, _session_factory

    settings = get_settings()
    _engine = create_async_engine(
        settings.database_url,
        pool_pre_ping=True,
        echo=settings.debug,
    )
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def close_database() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError(
            "CredTrail database is not initialised; init_database() runs in the app lifespan"
        )
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    One transaction: committed when the block exits cleanly.

    Any exception rolls back every write made in the block and propagates,
    so a failed account link leaves no user, membership or session row.
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

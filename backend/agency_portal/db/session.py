"""
Database session management.

WHY: Async database sessions are required for FastAPI's async/await pattern.
Each request (and each expiry sweep item) is one unit of work: every
lifecycle transition's proposal, invoice, snapshot and event writes commit
or roll back together.
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from agency_portal.core.config import settings


# Create async engine
# WHY: pool_pre_ping recycles stale connections. Pool sizing only applies
# to server databases; SQLite is used for local development.
_engine_options = {"echo": settings.DEBUG, "pool_pre_ping": True}
if not settings.is_sqlite:
    _engine_options.update(pool_size=10, max_overflow=20)

engine = create_async_engine(settings.async_database_url, **_engine_options)

# Create session factory
# WHY: expire_on_commit=False prevents lazy-loading issues after commit.
# autoflush=False gives the DAOs explicit control over flush points.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    WHY: The request is the transaction boundary. The lifecycle service only
    flushes; this dependency commits on success and rolls back on any error,
    so a failed transition leaves no partial state behind.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

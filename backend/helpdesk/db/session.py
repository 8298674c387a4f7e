"""
Database session management.

WHY: Async database sessions are required for FastAPI's async/await pattern.
Request handlers get one session per request via get_db; background jobs
open one short session per unit of work via session_scope so a failure in
one ticket's transaction never leaks into the next.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Callable

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from helpdesk.core.config import settings
from helpdesk.core.exceptions import AuthorizationError


# WHY: pool_pre_ping recycles stale connections in the long-running
# scheduler process.
engine = create_async_engine(
    settings.async_database_url,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

# WHY: expire_on_commit=False prevents lazy-loading issues after commit.
# autoflush=False gives explicit control over when UPDATEs (and their
# version checks) hit the database.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

SessionFactory = Callable[[], AsyncSession]


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    WHY: Each request gets its own session, committed when the handler
    returns and rolled back if it raises. Authorization failures are the
    exception: the request wrote nothing but its denial audit fact, which
    must survive.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except AuthorizationError:
            await session.commit()
            raise
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def session_scope(factory: SessionFactory = AsyncSessionLocal) -> AsyncIterator[AsyncSession]:
    """
    Transactional scope for background work.

    Commits on success, rolls back on any exception and re-raises.

    Args:
        factory: Session factory (tests pass one bound to their engine)
    """
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()

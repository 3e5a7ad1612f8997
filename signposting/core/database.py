"""
Database connection and session management
"""
from typing import AsyncGenerator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm.exc import StaleDataError
import structlog

from signposting.core.config import settings
from signposting.core.exceptions import ConflictException

logger = structlog.get_logger()

# Create async engine
engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.APP_DEBUG,
    pool_pre_ping=True,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session

    Usage:
        @app.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("database_session_error", error=str(e))
            raise
        finally:
            await session.close()


async def commit_or_conflict(db: AsyncSession, operation: str) -> None:
    """
    Commit the session, turning lost races into ConflictException

    A StaleDataError means another transaction bumped the row's lock_version
    first; an IntegrityError means a constraint rejected the write. Both are
    rolled back so the session stays usable.

    Args:
        db: Database session
        operation: Operation name used in logs and error detail

    Raises:
        ConflictException: If the commit was rejected
    """
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        logger.warning("concurrent_modification_detected", operation=operation, error=str(e))
        raise ConflictException(
            "Concurrent modification",
            detail=f"{operation} lost a race with another change; reload and retry",
        )
    except IntegrityError as e:
        await db.rollback()
        logger.error("database_constraint_violation", operation=operation, error=str(e))
        raise ConflictException(
            f"{operation} failed",
            detail="Database constraint violation",
        )


async def close_db() -> None:
    """Close database connection"""
    await engine.dispose()
    logger.info("database_connection_closed")

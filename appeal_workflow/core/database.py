"""Database connection and session management.

Transaction Guarantees:
- Each appeal transition runs in its own session and transaction
- On any exception, that transaction is rolled back
- Sessions are properly closed after each unit of work
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, with pooling options for server databases."""
    url = database_url.replace("postgresql://", "postgresql+asyncpg://")

    if url.startswith("sqlite"):
        # SQLite pools are per-process; pool sizing does not apply
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=echo,
        pool_pre_ping=True,  # Check connection health before use
        pool_recycle=300,
        pool_timeout=30,  # Bounded wait for a connection
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,  # Transition results are read after commit
        autoflush=False,
    )


engine = build_engine(settings.database_url_async, echo=settings.database_echo)
async_session_factory = build_session_factory(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a transactional database session.

    - On successful completion: COMMIT
    - On any exception: ROLLBACK
    - Session is always closed properly
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception as e:
            await session.rollback()
            logger.error(f"Error during request, transaction rolled back: {e}")
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions (for use outside FastAPI)."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Initialize database (create tables if needed)."""
    from ..models import Base

    async with (bind or engine).begin() as conn:
        # In production, use Alembic migrations instead
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()

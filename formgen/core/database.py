# formgen/core/database.py
"""
Database configuration for async operations

Engines and session factories are built per application instance
so tests can point them at their own database.
"""

from fastapi import Request
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from formgen.core.settings import Settings
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def create_engine(settings: Settings) -> AsyncEngine:
    """Create async engine with pooling settings suited to the backend"""
    url = settings.DATABASE_URL

    if url.startswith("postgresql+asyncpg"):
        return create_async_engine(
            url,
            echo=False,  # Set to True for SQL query logging

            # Connection pool settings
            pool_size=10,  # Number of connections to maintain
            max_overflow=20,  # Additional connections beyond pool_size
            pool_timeout=30,  # Timeout for getting a connection from pool
            pool_recycle=3600,  # Recycle connections after 1 hour
            pool_pre_ping=True,  # Test connections before using them

            connect_args={
                "server_settings": {
                    "application_name": "FormGen",
                    "jit": "off"
                },
                "timeout": 60,
                "command_timeout": 300,  # LLM-backed requests can hold a session for a while
            }
        )

    return create_async_engine(url, echo=False)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Don't expire objects after commit
        autocommit=False,
        autoflush=False,
    )


async def get_db(request: Request):
    """
    Dependency for FastAPI routes
    Provides a database session with automatic cleanup
    """
    session_factory = request.app.state.container.session_factory
    async with session_factory() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()


async def init_db(engine: AsyncEngine):
    """Initialize database tables"""
    # Import models so they are registered on Base.metadata
    import formgen.models.form  # noqa: F401
    import formgen.models.submission  # noqa: F401
    import formgen.models.webhook_log  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database initialized")


async def close_db(engine: AsyncEngine):
    """Close database connections (call on shutdown)"""
    await engine.dispose()
    logger.info("✅ Database connections closed")

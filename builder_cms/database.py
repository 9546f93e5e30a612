"""
Database connection and session management for SQLAlchemy 2.0.
Async engine for PostgreSQL in production, SQLite (aiosqlite) for local runs and tests.
"""
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from urllib.parse import urlparse
import logging

from builder_cms.config import settings

logger = logging.getLogger(__name__)

# Create declarative base for models
Base = declarative_base()

DATABASE_URL = settings.DATABASE_URL or "sqlite+aiosqlite:///:memory:"

_engine_args = {
    "echo": False,  # Set to True for SQL query logging in development
}

# Pool settings only apply to PostgreSQL
if DATABASE_URL.startswith("postgresql"):
    _engine_args.update({
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,  # Verify connections before using
        "pool_recycle": 3600,
        "connect_args": {
            "server_settings": {
                "application_name": "builder-cms-backend"
            }
        }
    })

engine = create_async_engine(DATABASE_URL, **_engine_args)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncSession:
    """
    FastAPI dependency for database sessions.
    Provides async database session with automatic commit/rollback.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {str(e)}", exc_info=True)
            raise
        finally:
            await session.close()


def _validate_database_url(url: str) -> tuple[bool, str]:
    """
    Validate database URL.
    Returns (is_valid, diagnostic_message)
    """
    parsed = urlparse(url)
    if url.startswith("sqlite"):
        return True, f"SQLite database: {parsed.path or ':memory:'}"

    if not url.startswith(("postgresql://", "postgresql+asyncpg://")):
        return False, f"Invalid database URL scheme. Expected postgresql+asyncpg:// or sqlite+aiosqlite://, got: {parsed.scheme}"

    if not parsed.hostname:
        return False, "No hostname found in DATABASE_URL"

    return True, f"Hostname: {parsed.hostname}, Port: {parsed.port or 5432}, Database: {parsed.path or '/postgres'}"


async def init_db(create_tables: bool = False):
    """
    Verify the database connection on startup.

    Args:
        create_tables: Create missing tables from the models (SQLite/dev setups)
    """
    is_valid, diagnostic = _validate_database_url(DATABASE_URL)
    if not is_valid:
        logger.error(f"Invalid DATABASE_URL: {diagnostic}")
        raise ValueError(f"Invalid DATABASE_URL: {diagnostic}")

    logger.info(f"Database URL validation: {diagnostic}")

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                await conn.run_sync(Base.metadata.create_all)
                logger.info("Database tables created")
        logger.info("Database connection initialized successfully")
    except Exception as e:
        logger.error(
            f"Database connection failed ({type(e).__name__}): {str(e)}\n"
            f"Diagnostic: {diagnostic}"
        )
        raise


async def close_db():
    """Close database connections on shutdown."""
    await engine.dispose()
    logger.info("Database connections closed")

"""
Database Connection Management

Async database engine management with SQLAlchemy 2.0.
Implements engine initialization, foreign-key enforcement, health checks and
graceful shutdown.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.config import get_settings

logger = structlog.get_logger(__name__)
settings = get_settings()

# Global engine
_engine: Optional[AsyncEngine] = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """SQLite only enforces foreign keys when asked to, per connection"""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Create an async engine for the warehouse store.

    Args:
        url: Database URL (defaults to configured URL)
        echo: Echo SQL statements

    Returns:
        AsyncEngine: A new engine
    """
    url = url or settings.database.get_url()
    engine = create_async_engine(
        url,
        echo=settings.database.echo if echo is None else echo,
        pool_pre_ping=True,  # Verify connections before use
        poolclass=NullPool,
    )

    if make_url(url).get_backend_name() == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    return engine


async def init_database(url: Optional[str] = None) -> AsyncEngine:
    """
    Initialize the global database engine.

    Returns:
        AsyncEngine: The initialized database engine
    """
    global _engine

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    _engine = create_engine(url)

    # Verify connection
    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info(
            "Database connection established",
            backend=_engine.dialect.name,
            database=_engine.url.database,
        )
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        await _engine.dispose()
        _engine = None
        raise

    return _engine


async def close_database() -> None:
    """
    Close the database engine.

    Gracefully closes all connections.
    """
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database connection closed")


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncConnection, None]:
    """
    Get a transactional connection.

    Context manager that commits on success and rolls back on error.

    Yields:
        AsyncConnection: Database connection inside a transaction

    Example:
        async with get_db() as conn:
            result = await conn.execute(query)
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    async with _engine.connect() as conn:
        trans = await conn.begin()
        try:
            yield conn
            await trans.commit()
        except Exception as e:
            logger.error("Database transaction error, rolling back", error=str(e), error_type=type(e).__name__)
            await trans.rollback()
            raise


async def check_database_health() -> dict:
    """
    Check database health status.

    Returns:
        dict: Health status with latency information
    """
    import time

    try:
        start = time.perf_counter()
        async with get_db() as conn:
            await conn.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }

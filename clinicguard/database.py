"""
Engine and session factory for the shared tenant pool.

Every clinic is served from one engine and one connection pool; a pooled
connection carries no tenant state, and isolation is enforced per query by
the scoped executor. Sessions are short-lived and owned by a request or a
unit of work.
"""

from typing import Any, Dict

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from clinicguard.config import Settings, get_settings
from clinicguard.logging_config import get_logger

logger = get_logger(__name__)

settings = get_settings()


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the engine for `settings.database_url`."""
    if settings.database_url.startswith("sqlite"):
        # One connection per session; SQLite serializes writers anyway.
        sqlite_engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )

        @event.listens_for(sqlite_engine.sync_engine, "connect")
        def _configure_sqlite(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={settings.database_busy_timeout_ms}")
            cursor.close()

        return sqlite_engine

    connect_args: Dict[str, Any] = {}
    if settings.database_url.startswith("postgresql+asyncpg"):
        # Shows which service holds a connection in pg_stat_activity
        connect_args["server_settings"] = {"application_name": settings.database_application_name}

    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_recycle=settings.database_pool_recycle,
        connect_args=connect_args,
    )


engine = build_engine(settings)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def check_db() -> bool:
    """Whether the pool can hand out a working connection."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Database health check failed", extra={"error": str(exc)})
        return False
    return True


async def init_db() -> None:
    """Create tables for every registered model."""
    from clinicguard.kernel.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()

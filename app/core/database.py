"""
Database configuration and async session management.
Supports SQLite (default) and PostgreSQL (optional override).
"""
import logging
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings
from app.core.logging_config import LogCategory, _sanitize_data

logger = logging.getLogger(LogCategory.DB)


def build_async_database_url(database_url: str) -> str:
    """Swap the configured driver for its asyncio counterpart."""
    url = make_url(database_url)
    if url.drivername.startswith("sqlite"):
        drivername = "sqlite+aiosqlite"
    elif url.drivername.startswith("postgres"):
        drivername = "postgresql+asyncpg"
    else:
        drivername = url.drivername
    return url.set(drivername=drivername).render_as_string(hide_password=False)


def create_engine_for_url(database_url: str) -> AsyncEngine:
    """Create an async engine with dialect-specific pool settings."""
    async_url = build_async_database_url(database_url)
    url = make_url(async_url)

    if url.drivername.startswith("sqlite"):
        is_sqlite_memory = url.database in (None, "", ":memory:")
        engine_kwargs = {"echo": False}
        if is_sqlite_memory:
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        engine = create_async_engine(async_url, **engine_kwargs)

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not is_sqlite_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        logger.info(f"Configured SQLite engine ({'in-memory' if is_sqlite_memory else 'file-based'})")
        return engine

    engine = create_async_engine(
        async_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections every hour
    )
    logger.info("Configured PostgreSQL engine with connection pooling")
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def is_sqlite_engine(engine: AsyncEngine) -> bool:
    return engine.dialect.name == "sqlite"


logger.info(
    f"Using {settings.database_type} database: {_sanitize_data(settings.effective_database_url)}"
)

async_engine = create_engine_for_url(settings.effective_database_url)
async_session_factory = create_session_factory(async_engine)


async def init_db(engine: AsyncEngine = None) -> None:
    """Create tables that do not exist yet."""
    # Register table metadata
    import app.models  # noqa: F401

    engine = engine or async_engine
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables verified")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session that rolls back on error."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

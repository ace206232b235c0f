"""
postscan Database Management
Handles database initialization and sessions
"""

import asyncio
from pathlib import Path
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy import event, select

from postscan.db.models import Base, PostType
from postscan.utils.config import get_settings

import structlog

logger = structlog.get_logger(__name__)

# Database engine and session factory (initialized lazily)
_engine = None
_async_session_factory = None
_database_url: Optional[str] = None
_lock = asyncio.Lock()

DEFAULT_POST_TYPES = [
    ("post", "Posts"),
    ("page", "Pages"),
]


def configure_database(url: Optional[str]) -> None:
    """Override the database URL. Must be called before the engine is created."""
    global _database_url, _lock
    _database_url = url
    # asyncio.Lock binds to the loop that first waits on it
    _lock = asyncio.Lock()


def get_database_url() -> str:
    """Get the database URL."""
    if _database_url:
        return _database_url

    settings = get_settings()
    if settings.database_url:
        return settings.database_url
    return f"sqlite+aiosqlite:///{settings.data_dir / 'postscan.db'}"


async def get_engine():
    """Get or create the database engine."""
    global _engine

    async with _lock:
        if _engine is None:
            url = get_database_url()
            is_sqlite = url.startswith("sqlite")

            engine_kwargs = {"echo": False, "pool_pre_ping": True}
            if is_sqlite:
                engine_kwargs["connect_args"] = {"check_same_thread": False}

            _engine = create_async_engine(url, **engine_kwargs)

            if is_sqlite:
                # Enable WAL mode for better concurrent access
                @event.listens_for(_engine.sync_engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.execute("PRAGMA synchronous=NORMAL")
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.execute("PRAGMA busy_timeout=5000")
                    cursor.close()

            logger.info("Database engine created", url=url)

    return _engine


async def get_session_factory():
    """Get or create the async session factory."""
    global _async_session_factory

    engine = await get_engine()
    async with _lock:
        if _async_session_factory is None:
            _async_session_factory = async_sessionmaker(
                bind=engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
            logger.info("Session factory created")

    return _async_session_factory


async def init_db() -> None:
    """Initialize the database, creating tables and default post types."""
    url = get_database_url()
    if url.startswith("sqlite") and ":///" in url:
        db_file = url.split(":///", 1)[1]
        if db_file and db_file != ":memory:":
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)

    engine = await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await _seed_post_types()

    logger.info("Database initialized", url=url)


async def _seed_post_types() -> None:
    """Register the built-in post types if they are missing."""
    async with get_db_session() as db:
        existing = set(await db.scalars(select(PostType.slug)))
        for slug, label in DEFAULT_POST_TYPES:
            if slug not in existing:
                db.add(PostType(slug=slug, label=label, public=True))
                logger.info("Registered post type", slug=slug)
        await db.commit()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting database sessions.

    IMPORTANT: This does NOT auto-commit. Routes must explicitly call:
    - await db.commit() to save changes
    - await db.rollback() to discard changes
    """
    session_factory = await get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions (for use outside of FastAPI routes).
    """
    session_factory = await get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def close_db() -> None:
    """Close the database engine."""
    global _engine, _async_session_factory

    async with _lock:
        if _engine:
            await _engine.dispose()
            _engine = None
            _async_session_factory = None
            logger.info("Database connection closed")

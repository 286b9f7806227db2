"""SQLAlchemy async engine and session factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .models import Base

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(database_url: str, **engine_kwargs) -> async_sessionmaker[AsyncSession]:
    """Initialise the async engine and session factory.

    Must be called once at application startup before any database access.
    PostgreSQL URLs get a pooled engine; *engine_kwargs* override the pool
    settings (tests pass SQLite URLs with their own pool class).
    """
    global _engine, _session_factory
    if database_url.startswith("postgresql") and not engine_kwargs:
        engine_kwargs = {"pool_size": 10, "max_overflow": 20}
    _engine = create_async_engine(database_url, **engine_kwargs)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory, initializing the engine from settings if needed."""
    if _session_factory is None:
        from ..config import Settings
        settings = Settings()
        return init_db(settings.database_url.get_secret_value())
    return _session_factory


async def get_session() -> AsyncSession:
    """FastAPI-compatible dependency that yields an ``AsyncSession``."""
    async with get_session_factory()() as session:
        yield session


@asynccontextmanager
async def AsyncSessionLocal():
    """Create a new async session.

    Usage:
        async with AsyncSessionLocal() as session:
            # use session
    """
    async with get_session_factory()() as session:
        yield session


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create all tables on *engine* (the global one by default)."""
    engine = engine or _engine
    if engine is None:
        raise RuntimeError("Database not initialised; call init_db() first")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Dispose of the engine connection pool.  Call at shutdown."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None

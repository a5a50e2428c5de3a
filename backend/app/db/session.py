"""
Database engine and session factory.

Production runs on PostgreSQL through asyncpg; tests build their own engine
with `build_engine` against in-memory SQLite and reuse `build_session_factory`
so both sides get the same session options.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from backend.app.core.config import settings

Base = declarative_base()


def build_engine(database_url: str, **overrides) -> AsyncEngine:
    """Create the async engine. Pool sizing only applies to server databases."""
    options = {"echo": settings.db_echo, "future": True}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow, pool_pre_ping=True)
    options.update(overrides)
    return create_async_engine(database_url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # Rows stay readable after commit; services hand them to view builders.
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = build_engine(settings.database_url)
AsyncSessionLocal = build_session_factory(engine)


async def get_db():
    """FastAPI dependency yielding a read session for query-only endpoints."""
    async with AsyncSessionLocal() as session:
        yield session

"""
Database Connection and Session Management

This module sets up SQLAlchemy's async database engine and provides
a dependency injection function for FastAPI routes to access database sessions.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from twokinds.config import settings


# Async engine; the driver comes from DATABASE_URL (asyncpg or aiosqlite)
engine = create_async_engine(settings.DATABASE_URL, echo=False)


# expire_on_commit=False keeps attributes readable after commit, which the
# services rely on when they return freshly committed rows to the routes
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_db():
    """
    Database session dependency for FastAPI routes.

    Yields a session for the duration of the request and closes it
    afterwards, even if the handler raised.
    """
    async with AsyncSessionLocal() as session:
        yield session


async def create_tables():
    """Create every table registered on the model metadata."""
    from twokinds.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

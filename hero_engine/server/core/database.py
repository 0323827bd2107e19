"""
Database Connection and Session Management.

This module sets up the asynchronous SQLAlchemy engine and session factory
shared by the engine's SQL repositories.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

# Import Base here to ensure it's available for table creation
from hero_engine.agent_core.repos.models import Base
from hero_engine.agent_core.repos.sql import create_engine, create_sessionmaker
from hero_engine.server.core.config import settings

"""
engine:
    The global SQLAlchemy AsyncEngine instance.
    Configured with the connection URL from settings (``DATABASE_URL``).
"""
engine = create_engine(settings.database_url)

"""
async_session_maker:
    A global factory for creating new AsyncSession instances.
    Bound to the `engine` and configured to NOT expire on commit (typical for async).
"""
async_session_maker = create_sessionmaker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency generator for database sessions.

    Yields:
        AsyncSession: An asynchronous SQLAlchemy session.
    """
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    """
    Initialize the database.

    Creates all tables defined in the engine's ORM metadata when missing.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()

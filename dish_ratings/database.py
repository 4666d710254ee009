"""Async SQLAlchemy engine/session builders and the Base declaration.

Engines are created by the process entry point and handed to the components
that need them; nothing in this module opens a connection at import time.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from dish_ratings.config import Settings


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""
    pass


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the Primary Store."""
    return create_async_engine(
        settings.database_url,
        echo=(settings.app_env == "development"),
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``; sessions never expire on commit."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def check_db_connectivity(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Return True if a simple SELECT 1 succeeds."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception:
        return False

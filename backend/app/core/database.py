"""Database engine and session configuration.

Only used when the document store runs on the SQL backend.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for ORM models."""
    pass


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine for the given or configured database URL.

    Raises:
        ValueError: If no database URL is configured
    """
    url = database_url or settings.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL is required for the sql document store")
    return create_async_engine(url, echo=settings.DEBUG, pool_pre_ping=True)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

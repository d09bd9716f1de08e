"""Database engine and session factory built with SQLAlchemy's async API.

Nothing here is created at import time: the process entry point builds the
engine, keeps it for its lifetime and disposes it on shutdown.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from billing_server import config


def build_engine(database_url: str = None, **kwargs) -> AsyncEngine:
    return create_async_engine(database_url or config.DATABASE_URL, echo=False, **kwargs)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
        class_=AsyncSession,
    )

"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Uses SQLAlchemy 2.0 asyncio. The default backend is a local SQLite file via
aiosqlite; PostgreSQL works through asyncpg by changing the URL.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    All models inherit from this class.
    """
    pass


class Database:
    """
    Owns the async engine and session factory for one application instance.

    Constructed once at startup and passed to the repositories that need it.
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        url = make_url(database_url.replace("sslmode=", "ssl="))
        engine_kwargs = {"echo": echo, "pool_pre_ping": True}

        if url.get_backend_name() == "sqlite":
            if url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        else:
            engine_kwargs["pool_size"] = pool_size
            engine_kwargs["max_overflow"] = max_overflow

        self._engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self._session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Prevent lazy loading after commit
            autoflush=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def is_sqlite(self) -> bool:
        """SQLite allows one writer at a time across all connections."""
        return self._engine.dialect.name == "sqlite"

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Async context manager for one unit of work.

        Commits when the block exits normally and rolls back when it raises,
        so everything written inside the block is applied atomically.

        Usage:
            async with database.session() as session:
                session.add(model)

        Yields:
            AsyncSession: SQLAlchemy async session
        """
        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """
        Create all database tables.

        Tables are created if missing; existing ones are left untouched.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of pooled connections. Safe to call more than once."""
        await self._engine.dispose()

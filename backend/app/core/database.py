"""Database handle and session management.

The handle is constructed explicitly, opened at process start and closed at
shutdown. Request handlers reach it through ``app.state.database``.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    async def open(self, create_schema: bool = True) -> None:
        """Create the engine and, optionally, any missing tables."""
        if self._engine is not None:
            return

        self._engine = create_async_engine(self.url, echo=self.echo)
        self._session_maker = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
        )

        if create_schema:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_maker = None

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; the caller commits, errors roll back."""
        if not self.is_open:
            raise RuntimeError("Database is not open")

        async with self._session_maker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise


def get_database(request: Request) -> Database:
    """FastAPI dependency returning the process-wide database handle."""
    return request.app.state.database


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a database session."""
    async with get_database(request).session() as session:
        yield session

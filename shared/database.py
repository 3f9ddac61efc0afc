"""Async engine, session factory, and session helpers.

Request handlers get a session through the `get_session` dependency.
Work that runs outside a request (background initial sync, scheduled
syncs) opens its own session with `session_scope`.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shared.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session outside the request cycle; rolls back anything left uncommitted."""
    async with (factory or async_session_factory)() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise

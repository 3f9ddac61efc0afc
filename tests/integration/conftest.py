"""Postgres-backed fixtures for repository tests. Requires Docker."""

from datetime import time
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from eight_sleep.domain.orm import Base
from eight_sleep.repository import EightSleepRepository


@pytest.fixture(scope="session")
def database_url():
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16-alpine") as pg:
        yield pg.get_connection_url().replace("psycopg2", "asyncpg")


@pytest.fixture
async def db_session(database_url) -> AsyncSession:
    """Session on a freshly created schema, including the read-only supplements table."""
    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_sessionmaker(engine, expire_on_commit=False)() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def repo(db_session):
    return EightSleepRepository(db_session)


@pytest.fixture
async def integration(repo):
    """A connected account with a Pacific sync schedule and no sync history."""
    return await repo.save_integration(
        uuid4(),
        {
            "email_encrypted": "enc-email",
            "password_encrypted": "enc-password",
            "eight_sleep_user_id": "es-user-1",
            "sync_time": time(8, 0),
            "sync_timezone": "America/Los_Angeles",
            "last_sync_status": "never",
            "consecutive_failures": 0,
        },
    )

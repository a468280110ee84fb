import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shelfwarden.models.entities import Base, User


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    await engine.dispose()


@pytest.fixture
async def users(session_maker):
    async with session_maker() as session:
        admin = User(plex_user_id="admin-1", username="admin", is_admin=True)
        alice = User(plex_user_id="user-2", username="alice")
        bob = User(plex_user_id="user-3", username="bob")
        session.add_all([admin, alice, bob])
        await session.commit()
        return {"admin": admin, "alice": alice, "bob": bob}

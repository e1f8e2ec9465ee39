# tests/conftest.py: Shared test fixtures
import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["ROOM_STORE_BACKEND"] = "sql"

from models import Base
from auth import AuthService
from database import get_db_session
from record_store import MemoryRecordStore, RoomLocks
from room_core import build_room_core, reset_runtime
from room_events import RoomEventHub
from main import app


class FakeClock:
    """Controllable clock for invitation expiry"""

    def __init__(self):
        self.now = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def fresh_runtime():
    reset_runtime()
    yield
    reset_runtime()


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hub():
    return RoomEventHub()


@pytest.fixture
def core(clock, hub):
    """Room services over an in-memory store"""
    return build_room_core(MemoryRecordStore(), locks=RoomLocks(), hub=hub, clock=clock)


@pytest_asyncio.fixture
async def room(core):
    """A room created by u1, with default settings"""
    room_id = await core.rooms.create_room({"name": "Demo", "creator_name": "Una"}, "u1")
    return room_id


def get_auth_headers(user_id: str, name: str = "", role: str = "user") -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user_id,
        "name": name or user_id,
        "role": role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}

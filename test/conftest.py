"""
Pytest configuration and fixtures for Gatekeeper tests

Every test gets its own SQLite database file, a fake clock and a recording
notification sender, so nothing touches real SMTP, Redis or wall-clock time.
"""

import os
import sys
import tempfile
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH120

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "gatekeeper_import.db")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"
os.environ.pop("REDIS_URL", None)

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.future import select  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

import gatekeeper.database as database_module  # noqa: E402
from gatekeeper.auth import create_access_token, hash_password  # noqa: E402
from gatekeeper.database import Base, get_db  # noqa: E402
from gatekeeper.main import app  # noqa: E402
from gatekeeper.models.user import Role, User  # noqa: E402
from gatekeeper.services.notification_sender import get_notification_sender  # noqa: E402
from gatekeeper.services.two_factor_service import TwoFactorService, get_clock  # noqa: E402
from gatekeeper.utils.nonce_cache import InMemoryNonceCache, get_nonce_cache  # noqa: E402

START_TIME = datetime(2026, 1, 15, 12, 0, 0)


class FakeClock:
    """Deterministic naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Notification sender that keeps every message instead of delivering it."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def send(self, channel: str, destination: str, message: str) -> bool:
        self.sent.append((channel, destination, message))
        return not self.fail

    @property
    def last_code(self) -> str:
        return self.sent[-1][2]


class EventRecorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [event.name for event in self.events]


@pytest.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    factory = async_sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)
    # Audit logging and the cleanup job open their own sessions
    monkeypatch.setattr(database_module, "AsyncSessionLocal", factory)
    return factory


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        for name, permissions in (("user", []), ("admin", ["*"])):
            session.add(Role(name=name, permissions=permissions))
        await session.commit()
        yield session


async def _create_user(db: AsyncSession, role_name: str, username: str, email: str, password: str) -> User:
    result = await db.execute(select(Role).where(Role.name == role_name))
    role = result.scalars().first()
    user = User(username=username, email=email, hashed_password=hash_password(password), role_id=role.id)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def test_user(test_db: AsyncSession) -> User:
    """Create a test user with 'user' role"""
    return await _create_user(test_db, "user", "testuser", "testuser@example.com", "testpassword")


@pytest.fixture
async def test_admin(test_db: AsyncSession) -> User:
    """Create a test admin user"""
    return await _create_user(test_db, "admin", "testadmin", "admin@example.com", "adminpassword")


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    access_token = create_access_token(data={"sub": test_user.email}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def admin_auth_headers(test_admin: User) -> dict:
    access_token = create_access_token(data={"sub": test_admin.email}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def nonce_cache() -> InMemoryNonceCache:
    return InMemoryNonceCache()


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def service(test_db, sender, nonce_cache, clock, events) -> TwoFactorService:
    return TwoFactorService(test_db, sender, nonce_cache, clock=clock, listeners=[events])


@pytest.fixture
async def client(session_factory, test_db, sender, nonce_cache, clock) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with per-test collaborators."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_sender] = lambda: sender
    app.dependency_overrides[get_nonce_cache] = lambda: nonce_cache
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()

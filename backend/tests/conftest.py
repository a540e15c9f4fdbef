"""
Pytest configuration for TeamCal backend tests.

Runs the app in-process against an in-memory SQLite database. Redis and
outbound email are replaced with in-memory stand-ins.
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-at-least-32-chars")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "test"

import httpx
import pytest
import resend
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import get_db
from app.core.dependencies import get_redis
from app.main import app
from app.models import Base
from app.workers.email_tasks import send_invitation_accepted_email, send_welcome_email


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeRedis:
    """The subset of redis.asyncio.Redis used by the auth flow."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if key in self.store)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.store.pop(key, None) is not None)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture()
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------

class EmailOutbox:
    """Records sent emails, queued acceptance notices and queued welcome emails."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.queued: list[dict] = []
        self.welcomed: list[dict] = []
        self.fail_sends = False
        self.fail_queue = False

    def send(self, params: dict) -> dict:
        if self.fail_sends:
            raise ConnectionError("mail provider unreachable")
        self.sent.append(params)
        return {"id": f"msg_{len(self.sent)}"}

    def delay(self, **kwargs) -> None:
        if self.fail_queue:
            raise ConnectionError("broker unreachable")
        self.queued.append(kwargs)

    def delay_welcome(self, **kwargs) -> None:
        if self.fail_queue:
            raise ConnectionError("broker unreachable")
        self.welcomed.append(kwargs)

    def subjects(self) -> list[str]:
        return [params["subject"] for params in self.sent]


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    box = EmailOutbox()
    monkeypatch.setattr(resend.Emails, "send", box.send)
    monkeypatch.setattr(send_invitation_accepted_email, "delay", box.delay)
    monkeypatch.setattr(send_welcome_email, "delay", box.delay_welcome)
    return box


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture()
async def client(session_factory):
    redis = FakeRedis()

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_redis():
        return redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()

import os
from datetime import datetime, timedelta, timezone

# Must be set before app modules read their configuration
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
TEST_SECRET = "rbac-test-secret-0123456789abcdef"
os.environ["JWT_SECRET"] = TEST_SECRET
os.environ["JWT_VERIFY_SIGNATURE"] = "1"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["AUDIT_LOG_TO_DATABASE"] = "0"

import jwt
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database.engine import get_db, init_db
from app.features.rbac.assignments import AssignmentLedger
from app.features.rbac.dependencies import get_clock
from app.features.rbac.repository import SqlAlchemyAssignmentStore, SqlAlchemyRoleStore
from app.features.rbac.roles import RoleCatalog


T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, at: datetime = T0):
        self.at = at

    def now(self) -> datetime:
        return self.at

    def advance(self, **kwargs) -> datetime:
        self.at = self.at + timedelta(**kwargs)
        return self.at

    def rewind(self, **kwargs) -> datetime:
        self.at = self.at - timedelta(**kwargs)
        return self.at


class RecordingAuditSink:
    def __init__(self):
        self.events = []

    async def emit(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if e.event_type == event_type]


class FailingAuditSink:
    async def emit(self, event):
        raise RuntimeError("audit backend unavailable")


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def catalog(clock):
    return RoleCatalog(clock)


@pytest.fixture
def ledger(clock):
    return AssignmentLedger(clock)


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def role_store(db):
    return SqlAlchemyRoleStore(db)


@pytest.fixture
def assignment_store(db):
    return SqlAlchemyAssignmentStore(db)


@pytest.fixture
def audit():
    return RecordingAuditSink()


def make_token(user_id: str, **claims) -> str:
    return jwt.encode({"sub": user_id, **claims}, TEST_SECRET, algorithm="HS256")


def auth_header(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}



# HTTP tests run synchronously: TestClient drives the app on its own event
# loop, so they get a file database with NullPool instead of the shared
# in-memory connection.

@pytest.fixture
def http_session_factory(tmp_path):
    import asyncio
    from sqlalchemy.pool import NullPool

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rbac.db'}", poolclass=NullPool)
    asyncio.run(init_db(engine))
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def run_in_db(http_session_factory):
    """Run ``fn(session)`` to completion against the HTTP test database and commit."""
    import asyncio

    def run(fn):
        async def go():
            async with http_session_factory() as session:
                result = await fn(session)
                await session.commit()
                return result
        return asyncio.run(go())

    return run


@pytest.fixture
def client(http_session_factory, clock):
    from fastapi.testclient import TestClient
    from app.main import app

    async def override_get_db():
        async with http_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    # Not entered as a context manager: startup would initialize the default engine
    yield TestClient(app)
    app.dependency_overrides.clear()

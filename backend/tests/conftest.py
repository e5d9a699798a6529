import asyncio
import os

# Must be set before app.config is imported anywhere.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import timedelta

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base, get_db
from app.main import app
from app.models.college import College
from app.models.user import User, UserRole
from app.realtime.hub import RecordingBroadcaster
from app.services import session_service
from app.services.auth_service import create_access_token
from app.utils import utcnow


# ============================================================================
# EVENT LOOP & IN-MEMORY DATABASE
# ============================================================================

@pytest.fixture
def loop():
    """A fresh event loop per test; tests stay synchronous and drive it by hand."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()
    asyncio.set_event_loop(None)


@pytest.fixture
def run(loop):
    return loop.run_until_complete


@pytest.fixture
def engine(run):
    # One shared in-memory database for every connection of the test.
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        # SQLAlchemy emits BEGIN itself so that SAVEPOINT works under pysqlite.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async def _create_all():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    run(_create_all())
    yield engine
    run(engine.dispose())


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def db(session_factory, run):
    """A database session for service-level tests."""
    session = session_factory()
    yield session
    run(session.close())


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

class SyncClientWrapper:
    def __init__(self, async_client, loop):
        self.async_client = async_client
        self.loop = loop

    def get(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.get(*args, **kwargs))

    def post(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.post(*args, **kwargs))

    def patch(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.patch(*args, **kwargs))

    def delete(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.delete(*args, **kwargs))


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def client(loop, session_factory, broadcaster):
    """httpx AsyncClient over the ASGI app, wrapped so tests can call it synchronously."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.broadcaster = broadcaster

    async_client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    )
    yield SyncClientWrapper(async_client, loop)

    loop.run_until_complete(async_client.aclose())
    app.dependency_overrides.clear()
    app.state.broadcaster = None


# ============================================================================
# ENTITY FIXTURES
# ============================================================================

def _add(run, session_factory, obj):
    async def _persist():
        async with session_factory() as session:
            session.add(obj)
            await session.commit()
            return obj

    return run(_persist())


def _user(username, role, college_id, **extra):
    return User(
        username=username,
        email=f"{username}@example.edu",
        first_name=username.capitalize(),
        last_name="Tester",
        role=role,
        college_id=college_id,
        is_active=True,
        **extra,
    )


@pytest.fixture
def college(run, session_factory):
    return _add(run, session_factory, College(name="Riverside College", code="RVC", is_active=True))


@pytest.fixture
def other_college(run, session_factory):
    return _add(run, session_factory, College(name="Hilltop College", code="HTC", is_active=True))


@pytest.fixture
def platform_admin(run, session_factory):
    return _add(run, session_factory, _user("root", UserRole.ADMIN, None))


@pytest.fixture
def admin(run, session_factory, college):
    return _add(run, session_factory, _user("dean", UserRole.ADMIN, college.id))


@pytest.fixture
def faculty(run, session_factory, college):
    return _add(run, session_factory, _user("turing", UserRole.FACULTY, college.id, department="CS"))


@pytest.fixture
def other_faculty(run, session_factory, college):
    return _add(run, session_factory, _user("hopper", UserRole.FACULTY, college.id, department="CS"))


@pytest.fixture
def student(run, session_factory, college):
    return _add(run, session_factory, _user("ada", UserRole.STUDENT, college.id, student_id="S-001"))


@pytest.fixture
def other_student(run, session_factory, college):
    return _add(run, session_factory, _user("grace", UserRole.STUDENT, college.id, student_id="S-002"))


@pytest.fixture
def outsider(run, session_factory, other_college):
    return _add(run, session_factory, _user("linus", UserRole.STUDENT, other_college.id, student_id="S-900"))


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token(user.id, user.role.value, user.college_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def scheduled_session(run, session_factory, faculty, student, other_student):
    """A scheduled session owned by ``faculty`` with both students enrolled."""

    async def _create():
        async with session_factory() as session:
            created = await session_service.create_session(
                session,
                faculty,
                title="Algorithms",
                subject="CS201",
                scheduled_start=utcnow() + timedelta(hours=1),
                duration_minutes=60,
                student_ids=[student.id, other_student.id],
            )
            await session.commit()
            return created.id

    return run(_create())


@pytest.fixture
def live_session(run, session_factory, faculty, scheduled_session):
    async def _start():
        async with session_factory() as session:
            await session_service.start_session(session, faculty, scheduled_session)
            await session.commit()

    run(_start())
    return scheduled_session

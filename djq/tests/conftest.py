from datetime import datetime, timedelta
from unittest.mock import Mock

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine, StaticPool, create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.session import Session

import djq.models  # noqa: F401  registers every table with Base.metadata
from djq.database.db import Base, get_db
from djq.main import app
from djq.models.users import User
from djq.services.events import create_event, publish_event

# Use an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine: Engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autoflush=False, bind=engine)

EVENT_START = datetime(2026, 11, 14, 21, 0)


@pytest.fixture(autouse=True)
def setup_database():
    """Give every test a fresh schema."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    """The sessionmaker bound to the test database, for code that opens its own sessions."""
    return TestingSessionLocal


@pytest.fixture
def db_session():
    db: Session = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# Override the database dependency
def override_get_db():
    db: Session = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    app.dependency_overrides[get_db] = override_get_db
    # no context manager: the lifespan would create tables on the configured database
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture(autouse=True)
def redis_client(monkeypatch: pytest.MonkeyPatch, fake_redis):
    """Route the per-booking locks to an in-process fake Redis."""
    monkeypatch.setattr("djq.services.locks.get_redis_client", lambda: fake_redis)
    return fake_redis


@pytest.fixture(autouse=True)
def listing_task(monkeypatch: pytest.MonkeyPatch):
    """Stand in for the Celery listing task so no broker is needed."""
    task = Mock()
    monkeypatch.setattr("djq.routes.events.sync_event_listing_task", task)
    return task


def add_user(db: Session, username: str, status: str | None = None) -> User:
    user = User(username=username, display_name=username.upper(), status=status)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_event(
    db: Session,
    host: User,
    *,
    slots: int = 2,
    duration: int = 60,
    publish: bool = True,
    allow_consecutive_slots: bool = True,
    max_consecutive_slots: int = 2,
    allow_b2b: bool = True,
):
    event = create_event(
        db,
        host_id=host.id,
        title="Open Decks",
        event_date=EVENT_START,
        start_time=EVENT_START,
        end_time=EVENT_START + timedelta(minutes=duration * slots),
        slot_duration_minutes=duration,
        allow_consecutive_slots=allow_consecutive_slots,
        max_consecutive_slots=max_consecutive_slots,
        allow_b2b=allow_b2b,
    )
    if publish:
        event = publish_event(db, event.id)
    return event


@pytest.fixture
def host(db_session: Session) -> User:
    return add_user(db_session, "host")


@pytest.fixture
def dj_a(db_session: Session) -> User:
    return add_user(db_session, "dj_a")


@pytest.fixture
def dj_b(db_session: Session) -> User:
    return add_user(db_session, "dj_b")


@pytest.fixture
def dj_c(db_session: Session) -> User:
    return add_user(db_session, "dj_c")

import uuid
from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from djq.core.config import get_database_url


class Base(DeclarativeBase):
    pass


def _build_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine = _build_engine(get_database_url())

SessionLocal = sessionmaker(autoflush=False, bind=engine)


def init_db() -> None:
    """Create tables in environments without migrations."""
    # Import models so that they register with Base.metadata
    import djq.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def new_id() -> str:
    return str(uuid.uuid4())

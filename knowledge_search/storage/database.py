"""
SQLAlchemy engine, session factory, and declarative base.

SQLite is the default backing store; any SQLAlchemy URL works.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator
import uuid

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..utils.logger import setup_logger

logger = setup_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models"""

    pass


def utc_now() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo on round-trip)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine suitable for multi-threaded use.

    In-memory SQLite shares one connection across threads so every session
    sees the same database.
    """
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        else:
            db_path = database_url.split("sqlite:///", 1)[-1]
            if db_path:
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(database_url, echo=echo, connect_args=connect_args)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet"""
    from . import tables  # noqa: F401  (registers models on Base.metadata)

    Base.metadata.create_all(engine)
    logger.info(f"Database initialized ({engine.url.render_as_string(hide_password=True)})")


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Transactional scope: commit on success, roll back on error"""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

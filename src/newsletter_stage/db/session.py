"""Engine, session factory and unit-of-work helpers."""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from newsletter_stage.core.settings import settings

# Seconds a SQLite connection waits for a competing writer before giving up
SQLITE_BUSY_TIMEOUT_SECONDS = 30

T = TypeVar("T")


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import newsletter_stage.models  # noqa: E402,F401


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for ``url``.

    SQLite connections may be used from the request threadpool and wait for
    competing writers instead of failing straight away.
    """
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    return create_engine(url, pool_pre_ping=True, echo=echo, connect_args=connect_args)


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.effective_database_url, echo=settings.sql_debug)

SessionLocal = build_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    with SessionLocal() as db:
        yield db


def with_transaction(session_factory: Callable[[], Session], fn: Callable[[Session], T]) -> T:
    """Run ``fn`` in one transaction: commit if it returns, roll back if it raises.

    Everything ``fn`` writes becomes visible together or not at all.
    """
    with session_factory() as session, session.begin():
        return fn(session)


def create_tables(bind: Engine | None = None) -> None:
    """Create all database tables."""
    Base.metadata.create_all(bind=bind or engine)


def drop_tables(bind: Engine | None = None) -> None:
    """Drop all database tables."""
    Base.metadata.drop_all(bind=bind or engine)

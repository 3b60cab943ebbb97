"""Database engine, sessions and the unit-of-work helper."""

from .session import (
    Base,
    SessionLocal,
    build_engine,
    build_session_factory,
    get_db,
    with_transaction,
)

__all__ = [
    "Base",
    "SessionLocal",
    "build_engine",
    "build_session_factory",
    "get_db",
    "with_transaction",
]

# tests/conftest.py
from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator, Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from newsletter_stage.api.v1.dependencies import get_email_sender
from newsletter_stage.core.security import create_access_token
from newsletter_stage.db.session import (
    Base,
    build_engine,
    build_session_factory,
    create_tables,
    drop_tables,
    with_transaction,
)
from newsletter_stage.db.session import get_db as app_get_session
from newsletter_stage.main import app as fastapi_app
from newsletter_stage.models import Subscription, SubscriptionStatus
from newsletter_stage.services.email_client import EmailSendError
from newsletter_stage.services.subscribers import SubscriberEmail

TEST_DB_URL = "sqlite://"

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class SentEmail:
    recipient: str
    subject: str
    html_content: str
    text_content: str


class RecordingEmailSender:
    """In-memory EmailSender that records deliveries and fails on demand."""

    def __init__(self, failing: set[str] | None = None, fail_all: bool = False) -> None:
        self.sent: list[SentEmail] = []
        self.attempts: list[str] = []
        self.failing = set(failing or ())
        self.fail_all = fail_all

    async def send_email(
        self,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        self.attempts.append(str(recipient))
        if self.fail_all or str(recipient) in self.failing:
            raise EmailSendError(f"delivery to {recipient} refused")
        self.sent.append(SentEmail(str(recipient), subject, html_content, text_content))

    @property
    def recipients(self) -> list[str]:
        return [email.recipient for email in self.sent]


def _clear_tables(engine: Engine) -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    try:
        yield engine
    finally:
        drop_tables(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[SessionFactory]:
    """Sessions bound to the shared in-memory database.

    Services commit their own transactions, so every test starts and ends
    with empty tables instead of running inside a rolled back transaction.
    """
    factory = build_session_factory(engine)
    try:
        yield factory
    finally:
        _clear_tables(engine)


@pytest.fixture()
def db_session(session_factory: SessionFactory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def file_engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """File-backed SQLite engine for tests that need several connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'newsletter.db'}")
    create_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def file_session_factory(file_engine: Engine) -> SessionFactory:
    return build_session_factory(file_engine)


def add_subscribers(
    session_factory: SessionFactory,
    emails: list[str],
    status: SubscriptionStatus = SubscriptionStatus.CONFIRMED,
) -> None:
    def _add(db: Session) -> None:
        for email in emails:
            db.add(
                Subscription(
                    email=email,
                    name=email.split("@")[0],
                    status=status.value,
                )
            )

    with_transaction(session_factory, _add)


@pytest.fixture()
def confirmed_subscribers(session_factory: SessionFactory) -> list[str]:
    """Three confirmed subscribers and one who never confirmed."""
    emails = ["ada@example.com", "grace@example.com", "linus@example.com"]
    add_subscribers(session_factory, emails)
    add_subscribers(
        session_factory, ["pending@example.com"], SubscriptionStatus.PENDING_CONFIRMATION
    )
    return emails


@pytest.fixture()
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture()
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def auth_headers(user_id: uuid.UUID) -> dict[str, str]:
    """Return authorization headers for the admin test user."""
    token = create_access_token(user_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI,
    session_factory: SessionFactory,
    email_sender: RecordingEmailSender,
) -> Iterator[TestClient]:
    def _get_session_override() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_email_sender, None)

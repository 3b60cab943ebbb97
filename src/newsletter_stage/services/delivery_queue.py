"""Transactional outbox of per-subscriber delivery tasks.

Tasks are written by the publisher in the same transaction as the issue they
belong to, and drained by delivery workers. A worker claims one task at a
time so that no two workers hold the same task:

- On PostgreSQL the claim is ``SELECT ... FOR UPDATE SKIP LOCKED LIMIT 1``.
  The row lock lives in the claim session's transaction until the task is
  retired, rescheduled or released.
- On stores without skip-locked (SQLite) the claim is a lease: a conditional
  ``UPDATE`` stamps a token and an expiry on a free row. A worker that dies
  while holding a lease loses it once ``lease_expires_at`` passes.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import ColumnElement, Select, delete, func, or_, select, update
from sqlalchemy.orm import Session

from newsletter_stage.core.settings import settings
from newsletter_stage.db.session import SessionLocal
from newsletter_stage.db.time import seconds_from, utcnow
from newsletter_stage.models import IssueDeliveryTask

# Constants
LEASE_CANDIDATES = 10

# Configure logger for this module
logger = logging.getLogger(__name__)


class ClaimStrategy(str, Enum):
    """How a worker gets exclusive hold of a task."""

    SKIP_LOCKED = "skip_locked"
    LEASE = "lease"


@dataclass
class ClaimedTask:
    """A task held by one worker.

    ``db`` is the claim session. It stays open until the task is retired,
    rescheduled or released, and is closed by those calls.
    """

    newsletter_issue_id: uuid.UUID
    subscriber_email: str
    n_retries: int
    db: Session
    lease_token: str | None = None


def build_claim_statement(now: datetime) -> Select[tuple[IssueDeliveryTask]]:
    """Select one due task, skipping rows locked by other transactions."""
    return (
        select(IssueDeliveryTask)
        .where(IssueDeliveryTask.execute_after <= now)
        .order_by(IssueDeliveryTask.execute_after)
        .limit(1)
        .with_for_update(skip_locked=True)
    )


def _task_key(claimed: ClaimedTask) -> tuple[ColumnElement[bool], ColumnElement[bool]]:
    return (
        IssueDeliveryTask.newsletter_issue_id == claimed.newsletter_issue_id,
        IssueDeliveryTask.subscriber_email == claimed.subscriber_email,
    )


class DeliveryQueue:
    """Persistent FIFO-ish queue of ``(issue, subscriber)`` delivery tasks."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        strategy: ClaimStrategy | None = None,
        lease_seconds: int | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            session_factory: Opens the sessions used by claims and counts.
            strategy: Claim strategy. Detected from the database dialect when None.
            lease_seconds: Lease duration for the lease strategy.
        """
        self.session_factory = session_factory
        self._strategy = strategy
        self.lease_seconds = (
            settings.delivery_lease_seconds if lease_seconds is None else lease_seconds
        )

    def enqueue_all(self, db: Session, issue_id: uuid.UUID, emails: Iterable[str]) -> int:
        """Add one task per distinct email inside the caller's transaction.

        Returns:
            Number of tasks written.
        """
        now = utcnow()
        unique_emails = list(dict.fromkeys(emails))
        db.add_all(
            [
                IssueDeliveryTask(
                    newsletter_issue_id=issue_id,
                    subscriber_email=email,
                    n_retries=0,
                    execute_after=now,
                )
                for email in unique_emails
            ]
        )
        db.flush()
        return len(unique_emails)

    def resolve_strategy(self, db: Session) -> ClaimStrategy:
        if self._strategy is None:
            dialect = db.get_bind().dialect.name
            self._strategy = (
                ClaimStrategy.SKIP_LOCKED if dialect == "postgresql" else ClaimStrategy.LEASE
            )
            logger.info("Delivery queue claims tasks using %s on %s", self._strategy.value, dialect)
        return self._strategy

    def claim_one(self) -> ClaimedTask | None:
        """Claim one due task, or return None when nothing is available."""
        db = self.session_factory()
        try:
            if self.resolve_strategy(db) is ClaimStrategy.SKIP_LOCKED:
                claimed = self._claim_skip_locked(db)
            else:
                claimed = self._claim_lease(db)
        except Exception:
            db.close()
            raise

        if claimed is None:
            db.close()
        return claimed

    def _claim_skip_locked(self, db: Session) -> ClaimedTask | None:
        task = db.scalars(build_claim_statement(utcnow())).first()
        if task is None:
            return None
        return ClaimedTask(
            newsletter_issue_id=task.newsletter_issue_id,
            subscriber_email=task.subscriber_email,
            n_retries=task.n_retries,
            db=db,
        )

    def _claim_lease(self, db: Session) -> ClaimedTask | None:
        now = utcnow()
        lease_is_free = or_(
            IssueDeliveryTask.lease_token.is_(None),
            IssueDeliveryTask.lease_expires_at < now,
        )
        candidates = db.execute(
            select(
                IssueDeliveryTask.newsletter_issue_id,
                IssueDeliveryTask.subscriber_email,
                IssueDeliveryTask.n_retries,
            )
            .where(IssueDeliveryTask.execute_after <= now, lease_is_free)
            .order_by(IssueDeliveryTask.execute_after)
            .limit(LEASE_CANDIDATES)
        ).all()
        db.rollback()

        for issue_id, email, n_retries in candidates:
            token = str(uuid.uuid4())
            result = db.execute(
                update(IssueDeliveryTask)
                .where(
                    IssueDeliveryTask.newsletter_issue_id == issue_id,
                    IssueDeliveryTask.subscriber_email == email,
                    lease_is_free,
                )
                .values(
                    lease_token=token,
                    lease_expires_at=seconds_from(now, self.lease_seconds),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount == 1:
                return ClaimedTask(
                    newsletter_issue_id=issue_id,
                    subscriber_email=email,
                    n_retries=n_retries,
                    db=db,
                    lease_token=token,
                )
        return None

    def retire(self, claimed: ClaimedTask) -> None:
        """Delete a task that reached a terminal outcome and end the claim."""
        db = claimed.db
        try:
            stmt = delete(IssueDeliveryTask).where(*_task_key(claimed))
            if claimed.lease_token is not None:
                stmt = stmt.where(IssueDeliveryTask.lease_token == claimed.lease_token)
            result = db.execute(stmt.execution_options(synchronize_session=False))
            if result.rowcount == 0:
                logger.warning(
                    "Task for issue %s and %s was no longer held when retired",
                    claimed.newsletter_issue_id,
                    claimed.subscriber_email,
                )
            db.commit()
        finally:
            db.close()

    def reschedule(self, claimed: ClaimedTask, delay_seconds: float) -> None:
        """Record a failed attempt and make the task due again after ``delay_seconds``."""
        db = claimed.db
        try:
            stmt = update(IssueDeliveryTask).where(*_task_key(claimed))
            if claimed.lease_token is not None:
                stmt = stmt.where(IssueDeliveryTask.lease_token == claimed.lease_token)
            db.execute(
                stmt.values(
                    n_retries=IssueDeliveryTask.n_retries + 1,
                    execute_after=seconds_from(utcnow(), delay_seconds),
                    lease_token=None,
                    lease_expires_at=None,
                ).execution_options(synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()

    def release(self, claimed: ClaimedTask) -> None:
        """Give a task back untouched so another worker can pick it up."""
        db = claimed.db
        try:
            db.rollback()
            if claimed.lease_token is not None:
                db.execute(
                    update(IssueDeliveryTask)
                    .where(
                        *_task_key(claimed),
                        IssueDeliveryTask.lease_token == claimed.lease_token,
                    )
                    .values(lease_token=None, lease_expires_at=None)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
        finally:
            db.close()

    def pending_count(self) -> int:
        """Return the number of tasks not yet retired."""
        with self.session_factory() as db:
            count = db.scalar(select(func.count()).select_from(IssueDeliveryTask))
        return int(count or 0)

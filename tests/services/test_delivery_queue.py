import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from newsletter_stage.db.session import with_transaction
from newsletter_stage.models import IssueDeliveryTask
from newsletter_stage.services.delivery_queue import (
    ClaimStrategy,
    DeliveryQueue,
    build_claim_statement,
)
from newsletter_stage.services.issues import IssueStore


def _issue_with_tasks(session_factory, emails):
    queue = DeliveryQueue(session_factory)

    def _create(db):
        issue_id = IssueStore().insert(db, "Weekly", "text", "<p>html</p>")
        queue.enqueue_all(db, issue_id, emails)
        return issue_id

    return with_transaction(session_factory, _create)


def _tasks(session_factory):
    with session_factory() as db:
        return db.scalars(select(IssueDeliveryTask).order_by(IssueDeliveryTask.subscriber_email)).all()


def test_claim_statement_skips_locked_rows_on_postgres():
    sql = str(
        build_claim_statement(datetime.now(UTC)).compile(dialect=postgresql.dialect())
    )
    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "LIMIT" in sql


def test_strategy_is_detected_from_dialect(session_factory):
    queue = DeliveryQueue(session_factory)
    with session_factory() as db:
        assert queue.resolve_strategy(db) is ClaimStrategy.LEASE


def test_enqueue_all_writes_one_task_per_distinct_email(session_factory):
    _issue_with_tasks(session_factory, ["a@example.com", "b@example.com", "a@example.com"])

    tasks = _tasks(session_factory)
    assert [task.subscriber_email for task in tasks] == ["a@example.com", "b@example.com"]
    assert all(task.n_retries == 0 for task in tasks)
    assert all(task.lease_token is None for task in tasks)


def test_claim_one_returns_none_on_empty_queue(session_factory):
    assert DeliveryQueue(session_factory).claim_one() is None


def test_claimed_task_is_invisible_to_other_claims(session_factory):
    issue_id = _issue_with_tasks(session_factory, ["only@example.com"])
    first = DeliveryQueue(session_factory)
    second = DeliveryQueue(session_factory)

    claimed = first.claim_one()
    assert claimed is not None
    assert claimed.newsletter_issue_id == issue_id
    assert claimed.subscriber_email == "only@example.com"
    assert claimed.lease_token is not None

    assert second.claim_one() is None

    first.retire(claimed)
    assert first.pending_count() == 0


def test_retire_removes_only_the_claimed_task(session_factory):
    _issue_with_tasks(session_factory, ["a@example.com", "b@example.com"])
    queue = DeliveryQueue(session_factory)

    claimed = queue.claim_one()
    queue.retire(claimed)

    remaining = _tasks(session_factory)
    assert len(remaining) == 1
    assert remaining[0].subscriber_email != claimed.subscriber_email


def test_reschedule_records_attempt_and_defers_task(session_factory):
    _issue_with_tasks(session_factory, ["a@example.com"])
    queue = DeliveryQueue(session_factory)

    claimed = queue.claim_one()
    queue.reschedule(claimed, 3600)

    (task,) = _tasks(session_factory)
    assert task.n_retries == 1
    assert task.lease_token is None
    assert queue.claim_one() is None
    assert queue.pending_count() == 1


def test_release_makes_task_claimable_again(session_factory):
    _issue_with_tasks(session_factory, ["a@example.com"])
    queue = DeliveryQueue(session_factory)

    claimed = queue.claim_one()
    queue.release(claimed)

    again = queue.claim_one()
    assert again is not None
    assert again.n_retries == 0
    queue.retire(again)


def test_expired_lease_is_taken_over(session_factory):
    _issue_with_tasks(session_factory, ["a@example.com"])
    crashed = DeliveryQueue(session_factory, strategy=ClaimStrategy.LEASE, lease_seconds=-1)
    survivor = DeliveryQueue(session_factory, strategy=ClaimStrategy.LEASE)

    stale = crashed.claim_one()
    fresh = survivor.claim_one()
    assert fresh is not None
    assert fresh.lease_token != stale.lease_token

    # The stale holder no longer owns the row, so its retire is a no-op.
    crashed.retire(stale)
    assert survivor.pending_count() == 1

    survivor.retire(fresh)
    assert survivor.pending_count() == 0


def test_tasks_of_different_issues_are_independent(session_factory):
    _issue_with_tasks(session_factory, ["a@example.com"])
    _issue_with_tasks(session_factory, ["a@example.com"])
    queue = DeliveryQueue(session_factory)

    issue_ids = set()
    while (claimed := queue.claim_one()) is not None:
        issue_ids.add(claimed.newsletter_issue_id)
        queue.retire(claimed)

    assert len(issue_ids) == 2
    assert all(isinstance(issue_id, uuid.UUID) for issue_id in issue_ids)

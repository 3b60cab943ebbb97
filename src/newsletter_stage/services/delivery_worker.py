"""Background delivery of queued newsletter emails.

Each DeliveryWorker repeatedly claims one task from the delivery queue, sends
the email and records the outcome. Delivery is at-least-once: a crash after
the send but before the task is retired makes the email go out again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from newsletter_stage.core.settings import settings
from newsletter_stage.db.session import SessionLocal
from newsletter_stage.services.delivery_queue import ClaimedTask, DeliveryQueue
from newsletter_stage.services.email_client import EmailSender, EmailSendError, get_email_client
from newsletter_stage.services.issues import IssueStore
from newsletter_stage.services.subscribers import InvalidSubscriberEmail, SubscriberEmail

# Configure logger for this module
logger = logging.getLogger(__name__)


class ExecutionOutcome(str, Enum):
    """Result of one worker iteration."""

    EMPTY_QUEUE = "empty_queue"
    DELIVERED = "delivered"
    SKIPPED_INVALID_ADDRESS = "skipped_invalid_address"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"


@dataclass(frozen=True)
class WorkerConfig:
    """Timing and retry policy for delivery workers.

    A task is attempted at most ``max_attempts`` times. Retries wait
    ``retry_base_delay * 2**n_retries`` seconds, capped at ``retry_max_delay``.
    """

    idle_backoff: float = 10.0
    error_backoff: float = 1.0
    max_attempts: int = 3
    retry_base_delay: float = 30.0
    retry_max_delay: float = 900.0

    @classmethod
    def from_settings(cls) -> WorkerConfig:
        return cls(
            idle_backoff=settings.delivery_idle_backoff_seconds,
            error_backoff=settings.delivery_error_backoff_seconds,
            max_attempts=max(1, settings.delivery_max_attempts),
            retry_base_delay=settings.delivery_retry_base_seconds,
            retry_max_delay=settings.delivery_retry_max_seconds,
        )

    def retry_delay(self, n_retries: int) -> float:
        return float(min(self.retry_base_delay * 2**n_retries, self.retry_max_delay))


class DeliveryWorker:
    """Drains the delivery queue one task at a time."""

    def __init__(
        self,
        queue: DeliveryQueue,
        sender: EmailSender,
        config: WorkerConfig | None = None,
        issues: IssueStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        name: str = "delivery-worker",
    ) -> None:
        """Initialize the worker.

        Args:
            queue: Queue to claim tasks from.
            sender: Email capability used for each delivery.
            config: Timing and retry policy. Defaults to the application settings.
            issues: Issue store used to load the content of claimed tasks.
            sleep: Replacement for the backoff wait. When None the worker waits
                on its stop signal so that ``stop()`` interrupts the backoff.
            name: Label used in log records.
        """
        self.queue = queue
        self.sender = sender
        self.config = config or WorkerConfig.from_settings()
        self.issues = issues or IssueStore()
        self.name = name
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background delivery loop."""

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self.run(), name=self.name)

    async def stop(self) -> None:
        """Stop the background delivery loop after the current iteration."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def run(self) -> None:
        """Loop until stopped, backing off when idle or after an error."""
        logger.info("%s started", self.name)
        while not self._stopping.is_set():
            try:
                outcome = await self.try_execute_task()
            except Exception:
                logger.exception("%s failed to execute a delivery task", self.name)
                await self._pause(self.config.error_backoff)
                continue

            if outcome is ExecutionOutcome.EMPTY_QUEUE:
                await self._pause(self.config.idle_backoff)
        logger.info("%s stopped", self.name)

    async def drain(self) -> list[ExecutionOutcome]:
        """Execute tasks until the queue has nothing due, returning each outcome."""
        outcomes: list[ExecutionOutcome] = []
        while True:
            outcome = await self.try_execute_task()
            if outcome is ExecutionOutcome.EMPTY_QUEUE:
                return outcomes
            outcomes.append(outcome)

    async def try_execute_task(self) -> ExecutionOutcome:
        """Claim and process a single task.

        Unexpected errors give the task back untouched and propagate.
        """
        claimed = self.queue.claim_one()
        if claimed is None:
            return ExecutionOutcome.EMPTY_QUEUE

        try:
            return await self._deliver(claimed)
        except Exception:
            self.queue.release(claimed)
            raise

    async def _deliver(self, claimed: ClaimedTask) -> ExecutionOutcome:
        issue_id = claimed.newsletter_issue_id
        email = claimed.subscriber_email

        try:
            recipient = SubscriberEmail.parse(email)
        except InvalidSubscriberEmail as err:
            logger.error(
                "Skipping a confirmed subscriber. Their stored contact details are invalid "
                "(newsletter_issue_id=%s subscriber_email=%s): %s",
                issue_id,
                email,
                err,
            )
            self.queue.retire(claimed)
            return ExecutionOutcome.SKIPPED_INVALID_ADDRESS

        issue = self.issues.get(claimed.db, issue_id)
        if issue is None:
            logger.error(
                "Dropping delivery task for a missing issue "
                "(newsletter_issue_id=%s subscriber_email=%s)",
                issue_id,
                email,
            )
            self.queue.retire(claimed)
            return ExecutionOutcome.FAILED

        try:
            await self.sender.send_email(
                recipient, issue.title, issue.html_content, issue.text_content
            )
        except EmailSendError as err:
            return self._handle_send_failure(claimed, err)

        self.queue.retire(claimed)
        logger.debug(
            "Delivered newsletter_issue_id=%s to subscriber_email=%s", issue_id, email
        )
        return ExecutionOutcome.DELIVERED

    def _handle_send_failure(self, claimed: ClaimedTask, err: EmailSendError) -> ExecutionOutcome:
        attempts = claimed.n_retries + 1
        if attempts < self.config.max_attempts:
            delay = self.config.retry_delay(claimed.n_retries)
            logger.warning(
                "Failed to deliver issue (newsletter_issue_id=%s subscriber_email=%s) "
                "on attempt %d/%d, retrying in %.0fs: %s",
                claimed.newsletter_issue_id,
                claimed.subscriber_email,
                attempts,
                self.config.max_attempts,
                delay,
                err,
            )
            self.queue.reschedule(claimed, delay)
            return ExecutionOutcome.RETRY_SCHEDULED

        logger.error(
            "Failed to deliver issue to a confirmed subscriber, dropping it "
            "(newsletter_issue_id=%s subscriber_email=%s attempts=%d): %s",
            claimed.newsletter_issue_id,
            claimed.subscriber_email,
            attempts,
            err,
        )
        self.queue.retire(claimed)
        return ExecutionOutcome.FAILED

    async def _pause(self, seconds: float) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            pass


def build_workers(
    session_factory: Callable[[], Session] = SessionLocal,
    sender: EmailSender | None = None,
    config: WorkerConfig | None = None,
    concurrency: int = 1,
) -> list[DeliveryWorker]:
    """Create ``concurrency`` workers sharing one sender and policy."""
    sender = sender or get_email_client()
    config = config or WorkerConfig.from_settings()
    return [
        DeliveryWorker(
            DeliveryQueue(session_factory),
            sender,
            config,
            name=f"delivery-worker-{index}",
        )
        for index in range(max(1, concurrency))
    ]


async def run_worker_until_stopped(
    session_factory: Callable[[], Session] = SessionLocal,
    sender: EmailSender | None = None,
    config: WorkerConfig | None = None,
    concurrency: int = 1,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run a pool of delivery workers until ``stop_event`` is set or the task is cancelled."""
    workers = build_workers(session_factory, sender, config, concurrency)
    for worker in workers:
        await worker.start()
    logger.info("Running %d delivery worker(s)", len(workers))

    try:
        await (stop_event or asyncio.Event()).wait()
    finally:
        for worker in workers:
            await worker.stop()

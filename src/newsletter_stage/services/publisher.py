"""Accepting newsletter issues for delivery.

Two policies are supported, selected by ``settings.publish_mode``:

- ``queued``: the issue and one delivery task per confirmed subscriber are
  written in the transaction that claimed the idempotency key, together with
  the response returned to the client. Background workers do the sending.
- ``direct``: emails are sent inline while the request waits. Nothing is made
  durable and retries are not deduplicated.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from newsletter_stage.core.settings import PublishMode, settings
from newsletter_stage.services.delivery_queue import DeliveryQueue
from newsletter_stage.services.email_client import EmailSender, EmailSendError, get_email_client
from newsletter_stage.services.idempotency import (
    AlreadyCompleted,
    IdempotencyError,
    IdempotencyKey,
    IdempotencyStore,
    SavedResponse,
)
from newsletter_stage.services.issues import IssueStore
from newsletter_stage.services.subscribers import (
    InvalidSubscriberEmail,
    SubscriberDirectory,
    SubscriberEmail,
)

ACCEPTED_MESSAGE = "The newsletter issue has been accepted and emails will go out shortly!"
PUBLISHED_MESSAGE = "The newsletter issue has been published!"

# Configure logger for this module
logger = logging.getLogger(__name__)


class PublishError(RuntimeError):
    """Raised when an issue could not be accepted or sent."""


@dataclass(frozen=True)
class IssueContent:
    """Title and bodies of a newsletter issue as submitted by an admin."""

    title: str
    html_content: str
    text_content: str


async def publish_issue(db: Session, sender: EmailSender, issue: IssueContent) -> int:
    """Send ``issue`` to every confirmed subscriber before returning.

    Stored addresses that fail validation are skipped with a warning. The
    first send failure aborts the remaining sends.

    Returns:
        Number of emails sent.

    Raises:
        PublishError: If subscribers cannot be loaded or a send fails.
    """
    try:
        emails = SubscriberDirectory(db).list_confirmed_emails()
    except SQLAlchemyError as err:
        raise PublishError("Failed to retrieve subscribers") from err

    sent = 0
    for raw_email in emails:
        try:
            recipient = SubscriberEmail.parse(raw_email)
        except InvalidSubscriberEmail as err:
            logger.warning(
                "Skipping a confirmed subscriber. Their stored contact details are invalid: %s",
                err,
            )
            continue

        try:
            await sender.send_email(recipient, issue.title, issue.html_content, issue.text_content)
        except EmailSendError as err:
            raise PublishError(f"Failed to send newsletter to {raw_email}") from err
        sent += 1

    logger.info("Published newsletter issue %r to %d subscribers", issue.title, sent)
    return sent


class IssuePublisher:
    """Entry point for admin publish requests."""

    def __init__(
        self,
        db: Session,
        sender: EmailSender | None = None,
        mode: PublishMode | None = None,
        idempotency: IdempotencyStore | None = None,
        issues: IssueStore | None = None,
        queue: DeliveryQueue | None = None,
    ) -> None:
        self.db = db
        self._sender = sender
        self.mode = settings.publish_mode if mode is None else mode
        self.idempotency = idempotency or IdempotencyStore()
        self.issues = issues or IssueStore()
        self.queue = queue or DeliveryQueue()

    @property
    def sender(self) -> EmailSender:
        if self._sender is None:
            self._sender = get_email_client()
        return self._sender

    async def submit_issue(
        self, user_id: uuid.UUID, key: str, issue: IssueContent
    ) -> SavedResponse:
        """Accept ``issue`` on behalf of ``user_id`` exactly once per idempotency key.

        Args:
            user_id: Admin submitting the issue.
            key: Client-chosen idempotency key.
            issue: Content to publish.

        Returns:
            The response to send back. A retry with the same key gets the
            bytes produced by the first successful attempt.

        Raises:
            InvalidIdempotencyKey: If ``key`` is empty or too long.
            IdempotencyInProgressError: If another request holds the key for
                longer than the polling window.
            PublishError: If the issue could not be stored or sent.
        """
        idempotency_key = IdempotencyKey.parse(key)

        if self.mode is PublishMode.DIRECT:
            sent = await publish_issue(self.db, self.sender, issue)
            return SavedResponse.from_response(
                JSONResponse({"message": PUBLISHED_MESSAGE, "subscribers": sent})
            )

        try:
            action = await self.idempotency.begin_or_fetch(self.db, user_id, idempotency_key)
        except SQLAlchemyError as err:
            self.db.rollback()
            logger.error("Failed to claim idempotency key %s: %s", idempotency_key, err)
            raise PublishError("Failed to store the newsletter issue") from err
        if isinstance(action, AlreadyCompleted):
            return action.response

        db = action.db
        try:
            issue_id = self.issues.insert(
                db, issue.title, issue.text_content, issue.html_content
            )
            emails = SubscriberDirectory(db).list_confirmed_emails()
            enqueued = self.queue.enqueue_all(db, issue_id, emails)
            response = SavedResponse.from_response(
                JSONResponse(
                    {
                        "message": ACCEPTED_MESSAGE,
                        "newsletter_issue_id": str(issue_id),
                        "subscribers": enqueued,
                    }
                )
            )
            saved = self.idempotency.complete(db, user_id, idempotency_key, response)
        except (SQLAlchemyError, IdempotencyError) as err:
            db.rollback()
            logger.error("Failed to accept newsletter issue: %s", err, exc_info=True)
            raise PublishError("Failed to store the newsletter issue") from err

        logger.info(
            "Accepted newsletter issue %s with %d delivery tasks (idempotency key %s)",
            issue_id,
            enqueued,
            idempotency_key,
        )
        return saved

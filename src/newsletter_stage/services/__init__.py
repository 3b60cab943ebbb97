"""Business logic services for the newsletter application."""

from .delivery_queue import ClaimedTask, ClaimStrategy, DeliveryQueue
from .delivery_worker import (
    DeliveryWorker,
    ExecutionOutcome,
    WorkerConfig,
    run_worker_until_stopped,
)
from .email_client import EmailClient, EmailSender, EmailSendError
from .idempotency import IdempotencyKey, IdempotencyStore, SavedResponse
from .issues import IssueStore
from .publisher import IssueContent, IssuePublisher, PublishError, publish_issue
from .subscribers import SubscriberDirectory, SubscriberEmail

__all__ = [
    "ClaimedTask", "ClaimStrategy", "DeliveryQueue",
    "DeliveryWorker", "ExecutionOutcome", "WorkerConfig", "run_worker_until_stopped",
    "EmailClient", "EmailSender", "EmailSendError",
    "IdempotencyKey", "IdempotencyStore", "SavedResponse",
    "IssueStore",
    "IssueContent", "IssuePublisher", "PublishError", "publish_issue",
    "SubscriberDirectory", "SubscriberEmail",
]

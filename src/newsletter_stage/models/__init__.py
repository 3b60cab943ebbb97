# src/newsletter_stage/models/__init__.py
"""SQLAlchemy models for the newsletter service."""

from .delivery_task import IssueDeliveryTask
from .idempotency import IdempotencyRecord
from .newsletter_issue import NewsletterIssue
from .subscription import Subscription, SubscriptionStatus

__all__ = [
    "IdempotencyRecord",
    "IssueDeliveryTask",
    "NewsletterIssue",
    "Subscription", "SubscriptionStatus",
]

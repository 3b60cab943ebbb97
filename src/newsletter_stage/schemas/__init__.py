"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .newsletter import (
    DeliveryQueueStatus,
    IssueAcceptedResponse,
    IssuePublishedResponse,
    NewsletterIssueCreate,
)

__all__ = [
    "DeliveryQueueStatus",
    "IssueAcceptedResponse",
    "IssuePublishedResponse",
    "NewsletterIssueCreate",
]

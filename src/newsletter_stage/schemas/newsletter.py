"""Newsletter-related Pydantic schemas."""

from pydantic import BaseModel, Field


class NewsletterIssueCreate(BaseModel):
    """Schema for submitting a newsletter issue for publication."""

    title: str = Field(..., description="Email subject")
    html_content: str = Field(..., description="HTML body")
    text_content: str = Field(..., description="Plain-text body")
    # Validated by the publisher so that a bad key answers 400, not 422.
    idempotency_key: str = Field(..., description="Client-chosen token deduplicating retries")


class IssueAcceptedResponse(BaseModel):
    """Schema returned once an issue has been queued for delivery."""

    message: str
    newsletter_issue_id: str
    subscribers: int


class IssuePublishedResponse(BaseModel):
    """Schema returned when an issue was emailed inline instead of queued."""

    message: str
    subscribers: int


class DeliveryQueueStatus(BaseModel):
    """Schema describing the backlog of the delivery queue."""

    pending_tasks: int

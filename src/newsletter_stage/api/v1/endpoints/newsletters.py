"""Admin newsletter publishing endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status
from starlette.responses import Response

from newsletter_stage.api.v1.dependencies import (
    CurrentUserIdDep,
    DeliveryQueueDep,
    IssuePublisherDep,
)
from newsletter_stage.schemas import (
    DeliveryQueueStatus,
    IssueAcceptedResponse,
    IssuePublishedResponse,
    NewsletterIssueCreate,
)
from newsletter_stage.services.idempotency import (
    IdempotencyInProgressError,
    InvalidIdempotencyKey,
)
from newsletter_stage.services.publisher import IssueContent, PublishError

# Seconds a client should wait before retrying a request whose key is in flight
RETRY_AFTER_SECONDS = 1

router = APIRouter(prefix="/admin/newsletters", tags=["newsletters"])

# Configure logger for this module
logger = logging.getLogger(__name__)


@router.post(
    "",
    # Queued publishing answers with the first shape, direct publishing with the second.
    response_model=IssueAcceptedResponse | IssuePublishedResponse,
    responses={
        400: {"description": "Invalid idempotency key"},
        401: {"description": "Missing or invalid bearer token"},
        409: {"description": "A request with the same idempotency key is in flight"},
        500: {"description": "The issue could not be stored or sent"},
    },
)
async def publish_newsletter_issue(
    body: NewsletterIssueCreate,
    user_id: CurrentUserIdDep,
    publisher: IssuePublisherDep,
) -> Response:
    """Accept a newsletter issue for delivery to all confirmed subscribers.

    Retrying with the same idempotency key returns the original response
    byte for byte without publishing again.
    """
    issue = IssueContent(
        title=body.title,
        html_content=body.html_content,
        text_content=body.text_content,
    )
    try:
        saved = await publisher.submit_issue(user_id, body.idempotency_key, issue)
    except InvalidIdempotencyKey as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    except IdempotencyInProgressError as err:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(err),
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        ) from err
    except PublishError as err:
        logger.error("Publishing newsletter issue failed: %s", err)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to publish the newsletter issue",
        ) from err

    return saved.to_response()


@router.get("/queue", response_model=DeliveryQueueStatus)
async def get_delivery_queue_status(
    _user_id: CurrentUserIdDep,
    queue: DeliveryQueueDep,
) -> DeliveryQueueStatus:
    """Return how many delivery tasks are still waiting to be sent."""
    pending = queue.pending_count()
    return DeliveryQueueStatus(pending_tasks=pending)

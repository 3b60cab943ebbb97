"""Shared API dependencies for authentication and common functionality."""

import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from newsletter_stage.core.security import InvalidTokenError, decode_access_token
from newsletter_stage.db.session import get_db
from newsletter_stage.services.delivery_queue import DeliveryQueue
from newsletter_stage.services.email_client import EmailSender, get_email_client
from newsletter_stage.services.publisher import IssuePublisher

# HTTP Bearer scheme for JWT authentication; missing credentials answer 401 below
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> uuid.UUID:
    """Get the id of the admin user behind the bearer token.

    Args:
        credentials: HTTP Bearer token credentials

    Returns:
        UUID carried in the token subject

    Raises:
        HTTPException: If the token is missing or invalid
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")
    try:
        return decode_access_token(credentials.credentials)
    except InvalidTokenError as err:
        raise _unauthorized("Could not validate credentials") from err


def get_email_sender() -> EmailSender:
    """Get the email sender for dependency injection."""
    return get_email_client()


def get_delivery_queue(db: SessionDep) -> DeliveryQueue:
    """Get a delivery queue bound to the request's database."""
    bind = db.get_bind()

    def session_factory() -> Session:
        return Session(bind=bind, autoflush=False)

    return DeliveryQueue(session_factory)


# Type alias for current user dependency
CurrentUserIdDep = Annotated[uuid.UUID, Depends(get_current_user_id)]
EmailSenderDep = Annotated[EmailSender, Depends(get_email_sender)]
DeliveryQueueDep = Annotated[DeliveryQueue, Depends(get_delivery_queue)]


def get_issue_publisher(
    db: SessionDep,
    sender: EmailSenderDep,
    queue: DeliveryQueueDep,
) -> IssuePublisher:
    """Get an issue publisher working in the request's session."""
    return IssuePublisher(db, sender=sender, queue=queue)


IssuePublisherDep = Annotated[IssuePublisher, Depends(get_issue_publisher)]

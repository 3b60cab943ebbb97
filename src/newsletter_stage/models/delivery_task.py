# src/newsletter_stage/models/delivery_task.py
"""SQLAlchemy model for the issue delivery queue."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, SmallInteger, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from newsletter_stage.db.session import Base
from newsletter_stage.db.time import utcnow


class IssueDeliveryTask(Base):
    """Outstanding delivery of one issue to one subscriber.

    Rows are the only record of pending work: a row is deleted once its
    delivery reaches a terminal outcome.
    """

    __tablename__ = "issue_delivery_queue"

    newsletter_issue_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("newsletter_issues.newsletter_issue_id"),
        primary_key=True,
    )
    subscriber_email: Mapped[str] = mapped_column(Text, primary_key=True)
    n_retries: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    execute_after: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    # Lease columns back the claim on stores without FOR UPDATE SKIP LOCKED.
    lease_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_issue_delivery_queue_execute_after", "execute_after"),
    )

"""Persistence of published newsletter issues."""

from __future__ import annotations

import uuid

from sqlalchemy.orm import Session

from newsletter_stage.db.time import utcnow
from newsletter_stage.models import NewsletterIssue


class IssueStore:
    """Writes and reads ``newsletter_issues`` rows inside the caller's transaction."""

    def insert(self, db: Session, title: str, text_content: str, html_content: str) -> uuid.UUID:
        """Insert a new issue and return its id.

        Every call creates a new row; deduplication is the idempotency store's job.
        """
        issue = NewsletterIssue(
            newsletter_issue_id=uuid.uuid4(),
            title=title,
            text_content=text_content,
            html_content=html_content,
            published_at=utcnow(),
        )
        db.add(issue)
        db.flush()
        return issue.newsletter_issue_id

    def get(self, db: Session, issue_id: uuid.UUID) -> NewsletterIssue | None:
        return db.get(NewsletterIssue, issue_id)

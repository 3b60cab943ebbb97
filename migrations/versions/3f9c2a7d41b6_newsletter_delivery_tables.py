"""newsletter delivery tables

Revision ID: 3f9c2a7d41b6
Revises:
Create Date: 2026-10-19 09:12:44.318207

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f9c2a7d41b6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create subscribers, issues, the delivery queue and idempotency storage."""
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("subscribed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "newsletter_issues",
        sa.Column("newsletter_issue_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("text_content", sa.Text(), nullable=False),
        sa.Column("html_content", sa.Text(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("newsletter_issue_id"),
    )
    op.create_table(
        "issue_delivery_queue",
        sa.Column("newsletter_issue_id", sa.Uuid(), nullable=False),
        sa.Column("subscriber_email", sa.Text(), nullable=False),
        sa.Column("n_retries", sa.SmallInteger(), nullable=False),
        sa.Column("execute_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("lease_token", sa.String(length=36), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["newsletter_issue_id"], ["newsletter_issues.newsletter_issue_id"]
        ),
        sa.PrimaryKeyConstraint("newsletter_issue_id", "subscriber_email"),
    )
    op.create_index(
        "ix_issue_delivery_queue_execute_after",
        "issue_delivery_queue",
        ["execute_after"],
    )
    op.create_table(
        "idempotency",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=50), nullable=False),
        sa.Column("response_status_code", sa.SmallInteger(), nullable=True),
        sa.Column("response_headers", sa.JSON(), nullable=True),
        sa.Column("response_body", sa.LargeBinary(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "idempotency_key"),
    )


def downgrade() -> None:
    """Drop the newsletter delivery tables."""
    op.drop_table("idempotency")
    op.drop_index("ix_issue_delivery_queue_execute_after", table_name="issue_delivery_queue")
    op.drop_table("issue_delivery_queue")
    op.drop_table("newsletter_issues")
    op.drop_table("subscriptions")

# src/newsletter_stage/models/idempotency.py
"""SQLAlchemy model for saved responses keyed by idempotency key."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, LargeBinary, SmallInteger, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from newsletter_stage.db.session import Base
from newsletter_stage.db.time import utcnow

IDEMPOTENCY_KEY_MAX_LENGTH = 50


class IdempotencyRecord(Base):
    """Response produced for a ``(user_id, idempotency_key)`` pair.

    The composite primary key is what serializes concurrent retries: only one
    insert of the placeholder can succeed. A row with ``response_status_code``
    set to NULL is a placeholder whose owner is still doing the work.
    """

    __tablename__ = "idempotency"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    idempotency_key: Mapped[str] = mapped_column(
        String(IDEMPOTENCY_KEY_MAX_LENGTH), primary_key=True
    )
    response_status_code: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    # [{"name": "content-type", "value": "<base64>"}, ...] in response order.
    response_headers: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    response_body: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    @property
    def is_complete(self) -> bool:
        return self.response_status_code is not None

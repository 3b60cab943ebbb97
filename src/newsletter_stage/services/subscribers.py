"""Read access to the subscriber directory."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from newsletter_stage.models import Subscription, SubscriptionStatus

_EMAIL_ADAPTER: Final[TypeAdapter[str]] = TypeAdapter(EmailStr)


class InvalidSubscriberEmail(ValueError):
    """Raised when a stored or submitted address is not a valid email."""


@dataclass(frozen=True)
class SubscriberEmail:
    """An email address that passed validation."""

    value: str

    @classmethod
    def parse(cls, raw: str) -> SubscriberEmail:
        try:
            _EMAIL_ADAPTER.validate_python(raw)
        except ValidationError as err:
            raise InvalidSubscriberEmail(f"Invalid email: {raw!r}") from err
        return cls(raw)

    def __str__(self) -> str:
        return self.value


class SubscriberDirectory:
    """Queries over the ``subscriptions`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_confirmed_emails(self) -> list[str]:
        """Return the distinct stored emails of confirmed subscribers, sorted.

        Addresses are returned as stored; callers validate them before sending.
        """
        rows = self.db.scalars(
            select(Subscription.email)
            .where(Subscription.status == SubscriptionStatus.CONFIRMED.value)
            .distinct()
            .order_by(Subscription.email)
        )
        return list(rows)

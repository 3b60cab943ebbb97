"""Idempotent request processing backed by the ``idempotency`` table.

A client retrying a request with the same idempotency key must get back the
response produced by the first attempt, and concurrent attempts must not
repeat its side effects. The store gives two guarantees:

- ``begin_or_fetch`` inserts a placeholder row. The primary key on
  ``(user_id, idempotency_key)`` lets exactly one caller succeed; that caller
  receives ``Claimed`` and keeps the open transaction for its side effects.
- ``complete`` writes the response onto the placeholder in that same
  transaction and commits, so a completed response and its side effects become
  visible together.

Every other caller gets ``AlreadyCompleted`` with the saved response, after
waiting briefly if the winner has not committed yet.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.responses import Response

from newsletter_stage.core.settings import settings
from newsletter_stage.db.time import utcnow
from newsletter_stage.models import IdempotencyRecord
from newsletter_stage.models.idempotency import IDEMPOTENCY_KEY_MAX_LENGTH

# Configure logger for this module
logger = logging.getLogger(__name__)


class InvalidIdempotencyKey(ValueError):
    """Raised when a client-supplied idempotency key is empty or too long."""


class IdempotencyError(RuntimeError):
    """Base exception for idempotency store failures."""


class IdempotencyInProgressError(IdempotencyError):
    """Raised when another request still holds the key after polling gave up."""


@dataclass(frozen=True)
class IdempotencyKey:
    """Validated client token identifying one logical request."""

    value: str

    @classmethod
    def parse(cls, raw: str) -> IdempotencyKey:
        if not raw:
            raise InvalidIdempotencyKey("The idempotency key cannot be empty")
        if len(raw) >= IDEMPOTENCY_KEY_MAX_LENGTH:
            raise InvalidIdempotencyKey(
                f"The idempotency key must be shorter than {IDEMPOTENCY_KEY_MAX_LENGTH} characters"
            )
        return cls(raw)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SavedResponse:
    """An HTTP response captured byte for byte.

    Headers keep their order and duplicates.
    """

    status_code: int
    headers: tuple[tuple[str, bytes], ...]
    body: bytes

    @classmethod
    def from_response(cls, response: Response) -> SavedResponse:
        headers = tuple((name.decode("latin-1"), value) for name, value in response.raw_headers)
        return cls(status_code=response.status_code, headers=headers, body=bytes(response.body))

    def to_response(self) -> Response:
        response = Response(content=self.body, status_code=self.status_code)
        response.raw_headers = [(name.encode("latin-1"), value) for name, value in self.headers]
        return response


@dataclass(frozen=True)
class Claimed:
    """The caller owns the key; ``db`` holds the open transaction."""

    db: Session


@dataclass(frozen=True)
class AlreadyCompleted:
    """An earlier request with the same key already produced ``response``."""

    response: SavedResponse


NextAction = Claimed | AlreadyCompleted


def _encode_headers(headers: Sequence[tuple[str, bytes]]) -> list[dict[str, Any]]:
    return [
        {"name": name, "value": base64.b64encode(value).decode("ascii")}
        for name, value in headers
    ]


def _decode_headers(raw: Sequence[dict[str, Any]]) -> tuple[tuple[str, bytes], ...]:
    return tuple((item["name"], base64.b64decode(item["value"])) for item in raw)


class IdempotencyStore:
    """Persists request/response pairs keyed by ``(user_id, idempotency_key)``."""

    def __init__(
        self,
        poll_interval: float | None = None,
        poll_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.poll_interval = (
            settings.idempotency_poll_interval_seconds if poll_interval is None else poll_interval
        )
        attempts = settings.idempotency_poll_attempts if poll_attempts is None else poll_attempts
        self.poll_attempts = max(1, attempts)
        self._sleep = sleep

    async def begin_or_fetch(
        self, db: Session, user_id: uuid.UUID, key: IdempotencyKey
    ) -> NextAction:
        """Claim ``key`` for ``user_id`` or return the response saved for it.

        Raises:
            IdempotencyInProgressError: If the key stays claimed by an
                unfinished request for the whole polling window.
        """
        for attempt in range(1, self.poll_attempts + 1):
            if self._try_insert_placeholder(db, user_id, key):
                return Claimed(db)

            saved = self.get_saved_response(db, user_id, key)
            # End the read transaction so the next poll sees fresh commits.
            db.rollback()
            if saved is not None:
                logger.info("Returning saved response for idempotency key %s", key)
                return AlreadyCompleted(saved)

            logger.debug(
                "Idempotency key %s is held by a request in flight (attempt %d/%d)",
                key,
                attempt,
                self.poll_attempts,
            )
            await self._sleep(self.poll_interval)

        raise IdempotencyInProgressError(
            f"A request with idempotency key {key} is still being processed"
        )

    def _try_insert_placeholder(self, db: Session, user_id: uuid.UUID, key: IdempotencyKey) -> bool:
        db.add(
            IdempotencyRecord(
                user_id=user_id,
                idempotency_key=key.value,
                created_at=utcnow(),
            )
        )
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            return False
        return True

    def get_saved_response(
        self, db: Session, user_id: uuid.UUID, key: IdempotencyKey
    ) -> SavedResponse | None:
        """Return the completed response for the key, if there is one."""
        # Read columns, not the entity, so no instance with this identity is
        # left in the session to clash with the next placeholder insert.
        row = db.execute(
            select(
                IdempotencyRecord.response_status_code,
                IdempotencyRecord.response_headers,
                IdempotencyRecord.response_body,
            ).where(
                IdempotencyRecord.user_id == user_id,
                IdempotencyRecord.idempotency_key == key.value,
            )
        ).one_or_none()
        if row is None or row.response_status_code is None:
            return None
        return SavedResponse(
            status_code=int(row.response_status_code),
            headers=_decode_headers(row.response_headers or []),
            body=bytes(row.response_body or b""),
        )

    def complete(
        self,
        db: Session,
        user_id: uuid.UUID,
        key: IdempotencyKey,
        response: SavedResponse,
    ) -> SavedResponse:
        """Store ``response`` on the claimed placeholder and commit the transaction."""
        record = db.get(IdempotencyRecord, (user_id, key.value))
        if record is None:
            raise IdempotencyError(f"No claimed placeholder for idempotency key {key}")

        record.response_status_code = response.status_code
        record.response_headers = _encode_headers(response.headers)
        record.response_body = response.body
        db.commit()
        return response

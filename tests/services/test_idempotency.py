import uuid

import pytest
from sqlalchemy import select
from starlette.responses import JSONResponse, Response

from newsletter_stage.db.session import with_transaction
from newsletter_stage.models import IdempotencyRecord
from newsletter_stage.services.idempotency import (
    AlreadyCompleted,
    Claimed,
    IdempotencyInProgressError,
    IdempotencyKey,
    IdempotencyStore,
    InvalidIdempotencyKey,
    SavedResponse,
)


def test_idempotency_key_accepts_up_to_49_characters():
    assert IdempotencyKey.parse("abc").value == "abc"
    assert IdempotencyKey.parse("k" * 49).value == "k" * 49


@pytest.mark.parametrize("raw", ["", "k" * 50, "k" * 120])
def test_idempotency_key_rejects_empty_or_long_keys(raw):
    with pytest.raises(InvalidIdempotencyKey):
        IdempotencyKey.parse(raw)


def test_saved_response_keeps_header_order_and_duplicates():
    response = Response(content=b"<p>ok</p>", status_code=201, media_type="text/html")
    response.raw_headers.append((b"set-cookie", b"a=1"))
    response.raw_headers.append((b"set-cookie", b"b=2"))

    saved = SavedResponse.from_response(response)
    rebuilt = saved.to_response()

    assert rebuilt.status_code == 201
    assert rebuilt.body == b"<p>ok</p>"
    assert rebuilt.raw_headers == response.raw_headers
    assert [value for name, value in saved.headers if name == "set-cookie"] == [b"a=1", b"b=2"]


@pytest.mark.asyncio
async def test_begin_claims_unused_key(db_session):
    store = IdempotencyStore(poll_interval=0, poll_attempts=1)
    user_id = uuid.uuid4()

    action = await store.begin_or_fetch(db_session, user_id, IdempotencyKey.parse("abc"))

    assert isinstance(action, Claimed)
    assert action.db is db_session
    record = db_session.get(IdempotencyRecord, (user_id, "abc"))
    assert record is not None
    assert not record.is_complete


@pytest.mark.asyncio
async def test_completed_response_is_returned_verbatim(session_factory):
    store = IdempotencyStore(poll_interval=0, poll_attempts=1)
    user_id = uuid.uuid4()
    key = IdempotencyKey.parse("abc")
    original = SavedResponse.from_response(JSONResponse({"message": "accepted"}))

    with session_factory() as first:
        action = await store.begin_or_fetch(first, user_id, key)
        assert isinstance(action, Claimed)
        store.complete(action.db, user_id, key, original)

    with session_factory() as second:
        replay = await store.begin_or_fetch(second, user_id, key)

    assert isinstance(replay, AlreadyCompleted)
    assert replay.response == original


@pytest.mark.asyncio
async def test_keys_are_scoped_per_user(session_factory):
    store = IdempotencyStore(poll_interval=0, poll_attempts=1)
    key = IdempotencyKey.parse("shared")

    with session_factory() as db:
        first = await store.begin_or_fetch(db, uuid.uuid4(), key)
        db.commit()
    with session_factory() as db:
        second = await store.begin_or_fetch(db, uuid.uuid4(), key)
        db.commit()

    assert isinstance(first, Claimed)
    assert isinstance(second, Claimed)


@pytest.mark.asyncio
async def test_in_flight_placeholder_times_out(session_factory):
    user_id = uuid.uuid4()
    with_transaction(
        session_factory,
        lambda db: db.add(IdempotencyRecord(user_id=user_id, idempotency_key="busy")),
    )
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    store = IdempotencyStore(poll_interval=0.25, poll_attempts=3, sleep=fake_sleep)
    with session_factory() as db, pytest.raises(IdempotencyInProgressError):
        await store.begin_or_fetch(db, user_id, IdempotencyKey.parse("busy"))

    assert delays == [0.25, 0.25, 0.25]


@pytest.mark.asyncio
async def test_waiter_picks_up_response_completed_while_polling(session_factory):
    user_id = uuid.uuid4()
    key = IdempotencyKey.parse("slow")
    saved = SavedResponse(status_code=200, headers=(("content-type", b"text/plain"),), body=b"done")
    with_transaction(
        session_factory,
        lambda db: db.add(IdempotencyRecord(user_id=user_id, idempotency_key="slow")),
    )

    async def finish_other_request(_seconds):
        def _complete(db):
            record = db.get(IdempotencyRecord, (user_id, "slow"))
            record.response_status_code = saved.status_code
            record.response_headers = [{"name": "content-type", "value": "dGV4dC9wbGFpbg=="}]
            record.response_body = saved.body

        with_transaction(session_factory, _complete)

    store = IdempotencyStore(poll_interval=0, poll_attempts=5, sleep=finish_other_request)
    with session_factory() as db:
        action = await store.begin_or_fetch(db, user_id, key)

    assert isinstance(action, AlreadyCompleted)
    assert action.response == saved


@pytest.mark.asyncio
async def test_rolled_back_claim_leaves_key_reusable(session_factory):
    store = IdempotencyStore(poll_interval=0, poll_attempts=1)
    user_id = uuid.uuid4()
    key = IdempotencyKey.parse("retry-me")

    with session_factory() as db:
        await store.begin_or_fetch(db, user_id, key)
        db.rollback()

    with session_factory() as db:
        action = await store.begin_or_fetch(db, user_id, key)
        db.commit()
        rows = db.scalars(select(IdempotencyRecord)).all()

    assert isinstance(action, Claimed)
    assert len(rows) == 1

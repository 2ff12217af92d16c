from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront import crud
from storefront.api.errors import AppError, RetryExhaustedError
from storefront.crud import delivery as delivery_crud
from storefront.enums import DeliveryAttemptStatus
from storefront.models import DeliveryAttempt, Order

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def order(db, customer) -> Order:
    order = Order(user_id=customer.id, total_amount=Decimal("9.99"), status="awaiting_pickup")
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def test_retry_delays_double():
    assert [crud.retry_delay_minutes(n) for n in (1, 2, 3)] == [5, 10, 20]


def test_schedule_retry_backoff(db, order):
    delays = []
    for n in range(1, 4):
        attempt = crud.schedule_retry(session=db, order_id=order.id, previous_error="Player offline", now=NOW)
        db.commit()
        db.refresh(attempt)
        assert attempt.attempt_number == n
        assert attempt.status == DeliveryAttemptStatus.scheduled
        assert attempt.error == "Player offline"
        delays.append(attempt.next_retry_at - attempt.created_at)

    assert delays == [timedelta(minutes=5), timedelta(minutes=10), timedelta(minutes=20)]
    assert crud.count_attempts(session=db, order_id=order.id) == 3


def test_schedule_retry_exhausts_after_three(db, order):
    for _ in range(crud.MAX_DELIVERY_ATTEMPTS):
        crud.schedule_retry(session=db, order_id=order.id, previous_error="x")
    db.commit()

    with pytest.raises(RetryExhaustedError) as exc:
        crud.schedule_retry(session=db, order_id=order.id, previous_error="x")
    assert exc.value.status_code == 400
    assert exc.value.max_attempts == 3
    assert crud.count_attempts(session=db, order_id=order.id) == 3


def test_duplicate_attempt_number_is_a_conflict(db, order, monkeypatch):
    crud.schedule_retry(session=db, order_id=order.id, previous_error="first")
    db.commit()

    # A concurrent writer that counted before our insert landed.
    monkeypatch.setattr(delivery_crud, "count_attempts", lambda **_: 0)
    with pytest.raises(AppError) as exc:
        crud.schedule_retry(session=db, order_id=order.id, previous_error="second")
    assert exc.value.status_code == 409

    assert len(crud.list_attempts(session=db, order_id=order.id)) == 1


def test_list_attempts_newest_first(db, order):
    for _ in range(3):
        crud.schedule_retry(session=db, order_id=order.id, previous_error="x")
    db.commit()

    assert [a.attempt_number for a in crud.list_attempts(session=db, order_id=order.id)] == [3, 2, 1]


def test_due_attempts_and_claim(db, order):
    first = crud.schedule_retry(session=db, order_id=order.id, previous_error="x", now=NOW)
    crud.schedule_retry(session=db, order_id=order.id, previous_error="x", now=NOW)
    db.commit()

    # attempt 1 is due after 5 minutes, attempt 2 after 10
    due = crud.list_due_attempts(session=db, now=NOW + timedelta(minutes=6))
    assert [a.id for a in due] == [first.id]
    assert crud.list_due_attempts(session=db, now=NOW) == []

    assert crud.claim_attempt(session=db, attempt_id=first.id) is True
    assert crud.claim_attempt(session=db, attempt_id=first.id) is False
    db.commit()

    assert db.get(DeliveryAttempt, first.id).status == DeliveryAttemptStatus.pending
    assert crud.list_due_attempts(session=db, now=NOW + timedelta(minutes=6)) == []


def test_stale_pending_attempt_expires_once(db, order):
    attempt = crud.schedule_retry(session=db, order_id=order.id, previous_error="x", now=NOW)
    db.commit()
    crud.claim_attempt(session=db, attempt_id=attempt.id)
    db.commit()
    claimed_at = db.get(DeliveryAttempt, attempt.id).updated_at
    timeout = timedelta(minutes=crud.PENDING_TIMEOUT_MINUTES)

    assert crud.list_stale_attempts(session=db, now=claimed_at + timeout - timedelta(minutes=1)) == []
    later = claimed_at + timeout + timedelta(minutes=1)
    assert [a.id for a in crud.list_stale_attempts(session=db, now=later)] == [attempt.id]

    assert crud.expire_attempt(session=db, attempt_id=attempt.id, now=later, error="Delivery timed out") is True
    assert crud.expire_attempt(session=db, attempt_id=attempt.id, now=later, error="Delivery timed out") is False
    db.commit()

    expired = db.get(DeliveryAttempt, attempt.id)
    assert expired.status == DeliveryAttemptStatus.failed
    assert expired.error == "Delivery timed out"

def test_resolve_open_attempts(db, order):
    attempt = crud.schedule_retry(session=db, order_id=order.id, previous_error="x", now=NOW)
    other = crud.schedule_retry(session=db, order_id=order.id, previous_error="x", now=NOW)
    db.commit()
    crud.claim_attempt(session=db, attempt_id=attempt.id)

    resolved = crud.resolve_open_attempts(
        session=db, order_id=order.id, status=DeliveryAttemptStatus.succeeded
    )
    db.commit()

    assert resolved == 1
    assert db.get(DeliveryAttempt, attempt.id).status == DeliveryAttemptStatus.succeeded
    assert db.get(DeliveryAttempt, other.id).status == DeliveryAttemptStatus.scheduled


def test_mark_attempt(db, order):
    attempt = crud.schedule_retry(session=db, order_id=order.id, previous_error="x")
    db.commit()

    marked = crud.mark_attempt(
        session=db, attempt_id=attempt.id, status=DeliveryAttemptStatus.failed, error="gone"
    )
    db.commit()
    assert marked.status == DeliveryAttemptStatus.failed
    assert marked.error == "gone"
    assert crud.mark_attempt(session=db, attempt_id=1, status=DeliveryAttemptStatus.failed) is None

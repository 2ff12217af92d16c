from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlmodel import Session

from storefront import crud
from storefront.enums import DeliveryAttemptStatus, OrderStatus
from storefront.models import Order, OrderItem, OrderUpdate, utc_now
from storefront.services.fulfillment import FulfillmentService
from storefront.worker import scheduler, tasks


@pytest.fixture
def order(db, customer, make_product) -> Order:
    product = make_product()
    order = Order(user_id=customer.id, total_amount=Decimal("24.99"), status="awaiting_pickup")
    db.add(order)
    db.add(
        OrderItem(
            order_id=order.id,
            product_id=product.id,
            quantity=1,
            price=product.price,
            product_name=product.name,
            mta_item_type=product.mta_item_type,
            mta_item_data=product.mta_item_data,
        )
    )
    db.commit()
    db.refresh(order)
    return order


def _later(minutes: int = 30):
    return utc_now() + timedelta(minutes=minutes)


def test_due_attempt_is_dispatched_once(db, service, order, fake_redis):
    attempt = crud.schedule_retry(session=db, order_id=order.id, previous_error="Player offline")
    db.commit()

    assert service.dispatch_due_retries(now=utc_now()) == 0
    assert service.dispatch_due_retries(now=_later()) == 1
    assert service.dispatch_due_retries(now=_later()) == 0

    assert len(fake_redis.messages) == 1
    _, fields = fake_redis.messages[0]
    assert fields["order_id"] == str(order.id)
    assert fields["attempt_number"] == "1"
    assert crud.list_attempts(session=db, order_id=attempt.order_id)[0].status == DeliveryAttemptStatus.pending


def test_concurrent_pollers_claim_each_attempt_once(db, engine, order, fake_redis, notifier):
    crud.schedule_retry(session=db, order_id=order.id, previous_error="Player offline")
    db.commit()

    with Session(engine) as other:
        first = FulfillmentService(db, notifier=notifier)
        second = FulfillmentService(other, notifier=notifier)
        # Both pollers saw the same due attempt before either claimed it.
        due = crud.list_due_attempts(session=other, now=_later())
        assert len(due) == 1

        assert first.dispatch_due_retries(now=_later()) == 1
        assert second._dispatch_attempt(due[0].id, order.id, due[0].attempt_number) == (False, None)

    assert len(fake_redis.messages) == 1


def test_dispatch_error_counts_as_failed_delivery(db, service, order, fake_redis):
    crud.schedule_retry(session=db, order_id=order.id, previous_error="Player offline")
    db.commit()
    fake_redis.fail = True

    assert service.dispatch_due_retries(now=_later()) == 0

    attempts = crud.list_attempts(session=db, order_id=order.id)
    assert [(a.attempt_number, a.status) for a in attempts] == [
        (2, DeliveryAttemptStatus.scheduled),
        (1, DeliveryAttemptStatus.failed),
    ]
    order = crud.get_order(session=db, order_id=order.id)
    assert order.status == OrderStatus.awaiting_pickup
    assert order.delivery_error == "MTA delivery failed. Retry scheduled for 2/3"


def test_dispatch_error_on_last_attempt_fails_order(db, service, order, fake_redis, notifier):
    for _ in range(3):
        crud.schedule_retry(session=db, order_id=order.id, previous_error="Player offline")
    db.commit()
    fake_redis.fail = True

    service.dispatch_due_retries(now=_later(120))

    order = crud.get_order(session=db, order_id=order.id)
    assert order.status == OrderStatus.failed
    assert order.delivery_error == "MTA delivery failed. Max retries exceeded."
    assert any("could not be delivered" in subject for _, subject in notifier.sent)


def test_attempts_of_finished_orders_are_skipped(db, service, order, fake_redis):
    crud.schedule_retry(session=db, order_id=order.id, previous_error="Player offline")
    crud.update_order(session=db, order_id=order.id, order_in=OrderUpdate(status=OrderStatus.cancelled))
    db.commit()

    assert service.dispatch_due_retries(now=_later()) == 0
    assert fake_redis.messages == []
    assert crud.list_attempts(session=db, order_id=order.id)[0].status == DeliveryAttemptStatus.failed


def test_unreported_attempt_times_out(db, service, order, fake_redis):
    crud.schedule_retry(session=db, order_id=order.id, previous_error="Player offline")
    db.commit()
    assert service.dispatch_due_retries(now=_later()) == 1

    # Still within the timeout: the attempt stays in flight.
    service.dispatch_due_retries(now=_later(45))
    assert crud.list_attempts(session=db, order_id=order.id)[0].status == DeliveryAttemptStatus.pending

    assert service.dispatch_due_retries(now=_later(30 + crud.PENDING_TIMEOUT_MINUTES + 1)) == 0

    attempts = crud.list_attempts(session=db, order_id=order.id)
    assert [(a.attempt_number, a.status) for a in attempts] == [
        (2, DeliveryAttemptStatus.scheduled),
        (1, DeliveryAttemptStatus.failed),
    ]
    assert attempts[1].error == "Delivery timed out"
    order = crud.get_order(session=db, order_id=order.id)
    assert order.status == OrderStatus.awaiting_pickup
    assert order.delivery_error == "Delivery timed out. Retry scheduled for 2/3"


def test_unreported_last_attempt_fails_order(db, service, order, fake_redis, notifier):
    for _ in range(3):
        crud.schedule_retry(session=db, order_id=order.id, previous_error="Player offline")
    db.commit()
    assert service.dispatch_due_retries(now=_later(120)) == 3

    service.dispatch_due_retries(now=_later(120 + crud.PENDING_TIMEOUT_MINUTES + 1))

    order = crud.get_order(session=db, order_id=order.id)
    assert order.status == OrderStatus.failed
    assert order.delivery_error == "Delivery timed out. Max retries exceeded."
    assert any("could not be delivered" in subject for _, subject in notifier.sent)


def test_worker_task_uses_its_own_session(db, engine, order, fake_redis, monkeypatch):
    attempt = crud.schedule_retry(
        session=db, order_id=order.id, previous_error="x", now=utc_now() - timedelta(hours=1)
    )
    db.commit()
    assert attempt.id
    monkeypatch.setattr(tasks, "engine", engine)

    assert tasks.dispatch_delivery_retries() == 1
    assert len(fake_redis.messages) == 1


def test_scheduler_registers_poller():
    sched = scheduler.build_scheduler()
    job = sched.get_job("delivery_retry_poller")
    assert job is not None
    assert job.max_instances == 1
    assert job.coalesce is True

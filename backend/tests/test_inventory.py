from __future__ import annotations

import pytest

from storefront import crud
from storefront.api.errors import AppError
from storefront.models import UNLIMITED_STOCK


def test_decrement_finite_stock(db, make_product):
    product = make_product(stock=5)

    assert crud.decrement_stock(session=db, product_id=product.id, quantity=3) is True
    db.commit()

    assert crud.get_product(session=db, product_id=product.id).stock == 2


def test_decrement_never_goes_negative(db, make_product):
    product = make_product(stock=1)

    assert crud.decrement_stock(session=db, product_id=product.id, quantity=1) is True
    # The second buyer of the last unit loses.
    assert crud.decrement_stock(session=db, product_id=product.id, quantity=1) is False
    db.commit()

    assert crud.get_product(session=db, product_id=product.id).stock == 0


def test_decrement_more_than_available_changes_nothing(db, make_product):
    product = make_product(stock=2)

    assert crud.decrement_stock(session=db, product_id=product.id, quantity=3) is False
    db.commit()

    assert crud.get_product(session=db, product_id=product.id).stock == 2


def test_unlimited_stock_is_never_touched(db, make_product):
    product = make_product(stock=UNLIMITED_STOCK)

    for _ in range(3):
        assert crud.decrement_stock(session=db, product_id=product.id, quantity=1000) is True
    db.commit()

    assert crud.get_product(session=db, product_id=product.id).stock == UNLIMITED_STOCK


def test_decrement_unknown_product(db):
    with pytest.raises(AppError) as exc:
        crud.decrement_stock(session=db, product_id=123, quantity=1)
    assert exc.value.status_code == 404
    assert exc.value.code == 404101


def test_restore_stock(db, make_product):
    finite = make_product(stock=1)
    unlimited = make_product(name="VIP Gold", stock=UNLIMITED_STOCK)

    crud.restore_stock(session=db, product_id=finite.id, quantity=4)
    crud.restore_stock(session=db, product_id=unlimited.id, quantity=4)
    crud.restore_stock(session=db, product_id=999, quantity=4)
    db.commit()

    assert crud.get_product(session=db, product_id=finite.id).stock == 5
    assert crud.get_product(session=db, product_id=unlimited.id).stock == UNLIMITED_STOCK


def test_has_stock(make_product):
    assert crud.has_stock(make_product(stock=UNLIMITED_STOCK), 10_000)
    assert crud.has_stock(make_product(name="A", stock=2), 2)
    assert not crud.has_stock(make_product(name="B", stock=2), 3)

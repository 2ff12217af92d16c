"""库存 CRUD 操作：库存检查和原子扣减 / 回补"""
from sqlalchemy import update
from sqlmodel import Session

from storefront.api.errors import product_not_found
from storefront.models import UNLIMITED_STOCK, Product


def get_product(*, session: Session, product_id: int) -> Product | None:
    return session.get(Product, product_id)


def has_stock(product: Product, quantity: int) -> bool:
    """不限量商品永远有库存"""
    return product.stock == UNLIMITED_STOCK or product.stock >= quantity


def decrement_stock(*, session: Session, product_id: int, quantity: int) -> bool:
    """
    扣减库存

    单条条件 UPDATE（``... WHERE stock >= quantity``），两个并发订单不可能
    同时拿到最后一件；以影响行数判断是否扣减成功。不限量商品直接返回成功。

    Returns:
        库存不足时返回 False，不做任何写入

    Raises:
        AppError: 商品不存在时 404101
    """
    product = get_product(session=session, product_id=product_id)
    if not product:
        raise product_not_found(product_id)
    if product.stock == UNLIMITED_STOCK:
        return True

    result = session.exec(  # type: ignore[call-overload]
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    session.expire(product, ["stock"])
    return result.rowcount == 1


def restore_stock(*, session: Session, product_id: int, quantity: int) -> None:
    """回补库存，不限量商品或已删除商品不做处理"""
    result = session.exec(  # type: ignore[call-overload]
        update(Product)
        .where(Product.id == product_id, Product.stock != UNLIMITED_STOCK)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        product = session.get(Product, product_id)
        if product is not None:
            session.expire(product, ["stock"])

"""订单 CRUD 操作"""
from collections import defaultdict

from sqlmodel import Session, col, select

from storefront.models import Order, OrderCreate, OrderItem, OrderItemCreate, OrderUpdate, User, utc_now


def create_order(
    *, session: Session, order_in: OrderCreate, items_in: list[OrderItemCreate]
) -> Order:
    """
    写入订单和订单明细

    这里不提交：事务由调用方控制，订单、明细和库存扣减要么一起生效，要么都不生效。
    """
    order = Order.model_validate(order_in)
    session.add(order)
    for item_in in items_in:
        session.add(OrderItem.model_validate(item_in, update={"order_id": order.id}))
    session.flush()
    return order


def get_order(*, session: Session, order_id: int) -> Order | None:
    return session.get(Order, order_id)


def get_order_for_update(*, session: Session, order_id: int) -> Order | None:
    """查询订单并加行锁（SELECT ... FOR UPDATE），锁持有到事务结束"""
    statement = select(Order).where(Order.id == order_id).with_for_update()
    return session.exec(statement).first()


def get_order_items(*, session: Session, order_ids: list[int]) -> dict[int, list[OrderItem]]:
    """按订单 ID 分组返回明细，没有明细的订单对应空列表"""
    grouped: dict[int, list[OrderItem]] = defaultdict(list)
    if not order_ids:
        return {}
    statement = (
        select(OrderItem)
        .where(col(OrderItem.order_id).in_(order_ids))
        .order_by(col(OrderItem.id))
    )
    for item in session.exec(statement).all():
        grouped[item.order_id].append(item)
    return {order_id: grouped.get(order_id, []) for order_id in order_ids}


def get_orders_for_user(
    *, session: Session, user_id: int
) -> list[tuple[Order, list[OrderItem]]]:
    """用户的订单（含明细），按创建时间倒序"""
    statement = (
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(col(Order.created_at).desc(), col(Order.id).desc())
    )
    orders = list(session.exec(statement).all())
    items = get_order_items(session=session, order_ids=[order.id for order in orders])
    return [(order, items[order.id]) for order in orders]


def get_all_orders(*, session: Session) -> list[tuple[Order, User, list[OrderItem]]]:
    """全部订单（含下单用户和明细），按创建时间倒序"""
    statement = (
        select(Order, User)
        .join(User, col(User.id) == col(Order.user_id))
        .order_by(col(Order.created_at).desc(), col(Order.id).desc())
    )
    rows = list(session.exec(statement).all())
    items = get_order_items(session=session, order_ids=[order.id for order, _ in rows])
    return [(order, user, items[order.id]) for order, user in rows]


def update_order(*, session: Session, order_id: int, order_in: OrderUpdate) -> Order | None:
    """
    更新订单

    只写入 ``order_in`` 中显式设置的字段，并刷新 ``updated_at``。订单不存在时返回 None。
    """
    order = session.get(Order, order_id)
    if not order:
        return None
    update_data = order_in.model_dump(exclude_unset=True)
    # status / mta_delivered 为 NOT NULL，显式传 None 视为不修改
    for key in ("status", "mta_delivered"):
        if key in update_data and update_data[key] is None:
            del update_data[key]
    if "status" in update_data:
        update_data["status"] = update_data["status"].value
    update_data["updated_at"] = utc_now()
    order.sqlmodel_update(update_data)
    session.add(order)
    session.flush()
    return order

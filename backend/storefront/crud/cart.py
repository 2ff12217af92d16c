"""购物车 CRUD 操作（履约服务只负责下单后清空）"""
from sqlalchemy import delete
from sqlmodel import Session

from storefront.models import CartItem


def clear_cart(*, session: Session, user_id: int) -> int:
    """清空用户购物车，返回删除的条数"""
    result = session.exec(delete(CartItem).where(CartItem.user_id == user_id))  # type: ignore[call-overload]
    return result.rowcount

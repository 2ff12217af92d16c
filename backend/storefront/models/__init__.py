"""
数据库模型（SQLModel 表）

按业务拆分：
- user.py: 用户（履约服务只读）
- product.py: 商品和购物车
- order.py: 订单、订单明细和订单更新模型
- delivery.py: 投递尝试和已处理的 webhook 事件

表之间只有外键，没有 ORM relationship；关联数据在 ``storefront.crud`` 里显式查询。
"""
from sqlmodel import SQLModel

from .base import utc_now
from .delivery import DeliveryAttempt, WebhookEvent
from .order import Order, OrderCreate, OrderItem, OrderItemCreate, OrderUpdate
from .product import UNLIMITED_STOCK, CartItem, Product
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "User",
    "Product",
    "CartItem",
    "UNLIMITED_STOCK",
    "Order",
    "OrderItem",
    "OrderCreate",
    "OrderItemCreate",
    "OrderUpdate",
    "DeliveryAttempt",
    "WebhookEvent",
]

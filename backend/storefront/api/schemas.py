"""
API 请求/响应模型

商城前端和游戏服务器桥接程序都使用 camelCase JSON，这里所有模型都配置了
camelCase 别名；Python 代码内仍使用 snake_case 字段名（``populate_by_name``）。
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storefront.enums import DeliveryAttemptStatus, OrderStatus
from storefront.models import DeliveryAttempt, Order, OrderItem, OrderItemCreate, User


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenPayload(BaseModel):
    """JWT 载荷，``sub`` 为用户 ID"""
    sub: str | None = None


# ============================================================
# 请求模型
# ============================================================


class OrderItemRequest(CamelModel):
    product_id: int
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    product_name: str = Field(min_length=1, max_length=128)
    mta_item_type: str = Field(min_length=1, max_length=32)
    mta_item_data: str

    def to_create(self) -> OrderItemCreate:
        return OrderItemCreate(**self.model_dump())


class OrderCreateRequest(CamelModel):
    """
    下单请求

    ``items`` 允许为空，由履约服务返回专门的错误码。
    """
    items: list[OrderItemRequest] = Field(default_factory=list)
    total_amount: Decimal = Field(ge=0)
    payment_method: str | None = Field(default=None, max_length=32)
    mta_username: str | None = None


class AdminOrderUpdateRequest(CamelModel):
    status: OrderStatus | None = None
    trigger_delivery: bool = False


class PaymentWebhookRequest(CamelModel):
    # orderId 可选，缺失时返回专门的 400001 错误
    order_id: int | None = None
    status: str = ""
    payment_id: str | None = None


class DeliveryCallbackRequest(CamelModel):
    order_id: int | None = None
    success: bool = False
    error: str | None = None
    delivery_id: str | None = None


# ============================================================
# 响应模型
# ============================================================


class UserSummary(CamelModel):
    id: int
    serial: str
    email: str
    phone: str | None = None

    @classmethod
    def from_user(cls, user: User) -> UserSummary:
        return cls(id=user.id, serial=user.serial, email=user.email, phone=user.phone)


class OrderItemData(CamelModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Decimal
    product_name: str
    mta_item_type: str
    mta_item_data: str

    @classmethod
    def from_item(cls, item: OrderItem) -> OrderItemData:
        return cls.model_validate(item, from_attributes=True)


class OrderData(CamelModel):
    id: int
    user_id: int
    total_amount: Decimal
    status: OrderStatus
    payment_method: str | None = None
    payment_id: str | None = None
    mta_delivered: bool
    delivery_error: str | None = None
    created_at: datetime
    updated_at: datetime
    order_items: list[OrderItemData] | None = None
    user: UserSummary | None = None

    @classmethod
    def from_order(
        cls,
        order: Order,
        items: list[OrderItem] | None = None,
        user: User | None = None,
    ) -> OrderData:
        return cls(
            id=order.id,
            user_id=order.user_id,
            total_amount=order.total_amount,
            status=OrderStatus(order.status),
            payment_method=order.payment_method,
            payment_id=order.payment_id,
            mta_delivered=order.mta_delivered,
            delivery_error=order.delivery_error,
            created_at=order.created_at,
            updated_at=order.updated_at,
            order_items=[OrderItemData.from_item(i) for i in items] if items is not None else None,
            user=UserSummary.from_user(user) if user is not None else None,
        )


class DeliveryAttemptData(CamelModel):
    id: int
    order_id: int
    attempt_number: int
    status: DeliveryAttemptStatus
    error: str | None = None
    next_retry_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_attempt(cls, attempt: DeliveryAttempt) -> DeliveryAttemptData:
        return cls.model_validate(attempt, from_attributes=True)


class WebhookAck(CamelModel):
    message: str
    order_id: int
    status: OrderStatus

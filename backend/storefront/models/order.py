"""
订单模型

订单主表 + 不可变的订单明细。明细在下单时快照价格、名称和游戏内物品参数，
之后商品改价不会影响历史订单。订单不会被删除。
"""
from datetime import datetime
from decimal import Decimal

from pydantic import model_validator
from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlmodel import Field, SQLModel
from typing_extensions import Self

from storefront.core.snowflake import generate_id
from storefront.enums import DELIVERED_ORDER_STATUSES, OrderStatus

from .base import utc_now


class Order(SQLModel, table=True):
    """
    订单主表

    字段说明：
    - id: Snowflake 主键
    - user_id: 下单用户
    - total_amount: 订单总额（Decimal，>= 0）
    - status: 订单状态，见 OrderStatus
    - payment_method: 下单时选择的支付方式
    - payment_id: 支付网关回调的最新支付 ID
    - mta_delivered: 物品是否已在游戏内发放
    - delivery_error: 最近一次投递错误，原样展示给用户
    - created_at / updated_at: 时间戳，每次更新都会刷新 updated_at
    """
    __tablename__ = "orders"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("users.id"), index=True, nullable=False)
    )
    total_amount: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    status: OrderStatus = Field(
        default=OrderStatus.pending_payment,
        sa_column=Column(String(20), index=True, nullable=False),
    )
    payment_method: str | None = Field(default=None, max_length=32)
    payment_id: str | None = Field(default=None, max_length=128)
    mta_delivered: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    delivery_error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class OrderItem(SQLModel, table=True):
    """订单明细，与订单一起写入，之后不再修改"""
    __tablename__ = "order_items"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("orders.id"), index=True, nullable=False)
    )
    product_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("products.id"), nullable=False)
    )
    quantity: int = Field(ge=1)
    price: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    product_name: str = Field(max_length=128)
    mta_item_type: str = Field(max_length=32)
    mta_item_data: str = Field(sa_column=Column(Text, nullable=False))


class OrderCreate(SQLModel):
    user_id: int
    total_amount: Decimal = Field(ge=0)
    payment_method: str | None = None


class OrderItemCreate(SQLModel):
    product_id: int
    quantity: int = Field(ge=1)
    price: Decimal
    product_name: str
    mta_item_type: str
    mta_item_data: str


class OrderUpdate(SQLModel):
    """
    订单更新（部分更新）

    创建后只有这里列出的字段可以修改。未设置的字段保持不变；
    显式传入 ``delivery_error=None`` 会清空错误信息。
    """
    status: OrderStatus | None = None
    mta_delivered: bool | None = None
    delivery_error: str | None = None
    payment_id: str | None = None

    @model_validator(mode="after")
    def _delivered_requires_delivered_status(self) -> Self:
        if self.mta_delivered and self.status is not None and self.status not in DELIVERED_ORDER_STATUSES:
            raise ValueError(f"mta_delivered cannot be set on a {self.status.value} order")
        return self

"""
商品与购物车模型

两张表归商品/购物车服务维护。履约服务读取商品、通过库存模块调整 ``stock``，
下单成功后清空购物车。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlmodel import Field, SQLModel

from storefront.core.snowflake import generate_id

from .base import utc_now

# stock 为 -1 表示不限量
UNLIMITED_STOCK = -1


class Product(SQLModel, table=True):
    """
    游戏内商品

    字段说明：
    - price: 当前售价（下单时会快照到订单明细）
    - mta_item_type / mta_item_data: 游戏服务器发放的物品类型和参数
    - stock: 剩余库存，-1 表示不限量
    - is_active: 为 false 时不在商城展示
    """
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= -1", name="ck_products_stock_min"),)

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    name: str = Field(max_length=128)
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    category: str = Field(default="", max_length=32)
    mta_item_type: str = Field(max_length=32)
    mta_item_data: str = Field(sa_column=Column(Text, nullable=False))
    stock: int = Field(default=UNLIMITED_STOCK)
    is_active: bool = Field(default=True)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class CartItem(SQLModel, table=True):
    __tablename__ = "cart_items"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    product_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("products.id"), nullable=False)
    )
    quantity: int = Field(default=1)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

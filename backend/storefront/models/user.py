"""
用户模型

账号由认证服务创建和登录，履约服务只读取：校验订单归属、管理员订单列表、通知邮箱。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from storefront.core.snowflake import generate_id

from .base import utc_now


class User(SQLModel, table=True):
    """
    商城用户（玩家或管理员）

    字段说明：
    - id: Snowflake 主键
    - serial: MTA 客户端序列号，每个玩家唯一
    - email: 订单通知邮箱
    - phone: 联系电话（可选）
    - is_admin: 是否可访问管理员订单接口
    - created_at: 创建时间
    """
    __tablename__ = "users"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    serial: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False)
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False)
    )
    phone: str | None = Field(default=None, max_length=32)
    is_admin: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

"""
投递记录模型

DeliveryAttempt 记录订单的每一次已排期或已发送的游戏内投递。
WebhookEvent 保存已处理的 webhook / 回调的幂等键，用于识别重放。
"""
from datetime import datetime

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from storefront.core.snowflake import generate_id
from storefront.enums import DeliveryAttemptStatus, WebhookSource

from .base import utc_now


class DeliveryAttempt(SQLModel, table=True):
    """
    订单的一次投递尝试

    attempt_number 从 1 开始，同一订单内唯一；并发的失败回调靠唯一约束保证不会拿到同一个序号。

    字段说明：
    - attempt_number: 1..MAX_DELIVERY_ATTEMPTS
    - status: scheduled -> pending -> succeeded / failed
    - error: 触发本次重试的错误
    - next_retry_at: 轮询任务可以发送的时间
    """
    __tablename__ = "delivery_attempts"
    __table_args__ = (
        UniqueConstraint("order_id", "attempt_number", name="uq_delivery_attempts_order_attempt"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("orders.id"), index=True, nullable=False)
    )
    attempt_number: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    status: DeliveryAttemptStatus = Field(
        default=DeliveryAttemptStatus.pending,
        sa_column=Column(String(16), index=True, nullable=False),
    )
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    next_retry_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), index=True, nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class WebhookEvent(SQLModel, table=True):
    """
    已处理的 webhook / 回调事件，(source, event_key) 唯一

    字段说明：
    - source: payment 或 delivery
    - event_key: 发送方提供的幂等键
    - order_id: 关联订单
    - payload: 原始请求体，用于审计
    """
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("source", "event_key", name="uq_webhook_events_source_key"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    source: WebhookSource = Field(sa_column=Column(String(16), nullable=False))
    event_key: str = Field(sa_column=Column(String(128), nullable=False))
    order_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    payload: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

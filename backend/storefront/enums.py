"""
枚举定义

模型、schema 与服务层共用。所有枚举都继承 str，入库和序列化时都是普通字符串。
"""
from enum import Enum


class OrderStatus(str, Enum):
    """
    订单状态

    - pending_payment: 下单完成，等待支付回调
    - paid: 已支付
    - awaiting_pickup: 等待玩家在游戏内领取 / 等待投递
    - completed: 管理员确认已在游戏内领取
    - delivered: 游戏服务器确认投递成功
    - failed: 支付被拒或投递重试用尽
    - cancelled: 用户或管理员取消
    """
    pending_payment = "pending_payment"
    paid = "paid"
    awaiting_pickup = "awaiting_pickup"
    completed = "completed"
    delivered = "delivered"
    failed = "failed"
    cancelled = "cancelled"


# 终态：不再允许任何状态变更
TERMINAL_ORDER_STATUSES = frozenset(
    {
        OrderStatus.completed,
        OrderStatus.delivered,
        OrderStatus.failed,
        OrderStatus.cancelled,
    }
)

# 只有这两个状态下 mta_delivered 才能为 true
DELIVERED_ORDER_STATUSES = frozenset({OrderStatus.completed, OrderStatus.delivered})

CANCELLABLE_ORDER_STATUSES = frozenset(
    {OrderStatus.pending_payment, OrderStatus.paid, OrderStatus.awaiting_pickup}
)


class DeliveryAttemptStatus(str, Enum):
    """
    投递尝试状态

    - scheduled: 等待 next_retry_at 到期
    - pending: 已被轮询任务领取并发送给游戏服务器，等待回报
    - succeeded: 游戏服务器回报成功
    - failed: 游戏服务器回报失败或超时未回报
    """
    pending = "pending"
    scheduled = "scheduled"
    succeeded = "succeeded"
    failed = "failed"


class WebhookSource(str, Enum):
    payment = "payment"
    delivery = "delivery"

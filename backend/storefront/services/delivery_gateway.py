"""
游戏内投递网关

投递任务写入 Redis Stream（``mta_delivery:<env>``）。游戏服务器桥接程序消费该 Stream，
发放物品后回调 ``POST /api/mta/delivery-callback``。
"""
import json
import logging

from storefront.core.config import settings
from storefront.core.redis import get_redis
from storefront.models import Order, OrderItem

logger = logging.getLogger(__name__)


class DeliveryGateway:
    def __init__(self, stream_key: str | None = None):
        # 每个环境一个 Stream
        self.stream_key = stream_key or f"mta_delivery:{settings.ENVIRONMENT}"

    def dispatch(self, order: Order, items: list[OrderItem], attempt_number: int = 0) -> str:
        """
        发送投递任务

        Args:
            order: 要投递的订单
            items: 订单明细
            attempt_number: 所属的重试序号，首次投递为 0

        Returns:
            Stream 消息 ID

        Raises:
            redis.RedisError: 写入 Stream 失败
        """
        payload = [
            {
                "productId": str(item.product_id),
                "productName": item.product_name,
                "quantity": item.quantity,
                "mtaItemType": item.mta_item_type,
                "mtaItemData": item.mta_item_data,
            }
            for item in items
        ]
        message_id = get_redis().xadd(
            self.stream_key,
            {
                "order_id": str(order.id),
                "user_id": str(order.user_id),
                "attempt_number": str(attempt_number),
                "items": json.dumps(payload),
            },
        )
        logger.info(
            "queued delivery of order %s (attempt %s) as %s", order.id, attempt_number, message_id
        )
        return message_id


def get_delivery_gateway() -> DeliveryGateway:
    return DeliveryGateway()

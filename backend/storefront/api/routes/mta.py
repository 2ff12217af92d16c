"""
游戏服务器回调接口

桥接程序通过共享的 ``x-api-key`` 请求头（MTA_API_KEY）认证。
"""
import hmac
import logging

from fastapi import APIRouter, Header

from storefront.api.deps import FulfillmentDep
from storefront.api.errors import invalid_api_key, missing_order_id
from storefront.api.schemas import DeliveryCallbackRequest, WebhookAck
from storefront.core.config import settings
from storefront.enums import OrderStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mta", tags=["mta"])


@router.post("/delivery-callback", response_model=WebhookAck)
def delivery_callback(
    service: FulfillmentDep,
    body: DeliveryCallbackRequest,
    x_api_key: str | None = Header(default=None),
) -> WebhookAck:
    """
    游戏服务器投递回报

    成功则订单标记为已投递；失败则按 5、10、20 分钟排期重试，三次重试后订单失败。
    带 ``deliveryId`` 的回报只处理一次。
    """
    expected = settings.MTA_API_KEY
    if expected and not hmac.compare_digest(x_api_key or "", expected):
        raise invalid_api_key()
    if not body.order_id:
        raise missing_order_id()

    order = service.apply_delivery_callback(
        body.order_id,
        body.success,
        error=body.error,
        delivery_id=body.delivery_id,
        payload=body.model_dump(mode="json", by_alias=True),
    )
    logger.info(
        "delivery callback for order %s: %s", order.id, "succeeded" if body.success else "failed"
    )
    return WebhookAck(message="Callback processed", order_id=order.id, status=OrderStatus(order.status))

"""
用户订单接口与支付网关回调

- POST /orders: 下单
- GET /orders, GET /orders/{id}: 订单查询
- POST /orders/{id}/cancel: 取消订单并回补库存
- POST /orders/payment-webhook: 支付网关通知
"""
import hmac
import logging

from fastapi import APIRouter, Header, status

from storefront import crud
from storefront.api.deps import CurrentAuth, FulfillmentDep, SessionDep
from storefront.api.errors import invalid_webhook_secret, missing_order_id
from storefront.api.schemas import OrderCreateRequest, OrderData, PaymentWebhookRequest, WebhookAck
from storefront.core.config import settings
from storefront.enums import OrderStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderData, status_code=status.HTTP_201_CREATED)
def create_order(
    session: SessionDep, auth: CurrentAuth, service: FulfillmentDep, body: OrderCreateRequest
) -> OrderData:
    """
    当前用户下单

    原子地检查并扣减库存，订单初始状态为 pending_payment，同时清空购物车。
    """
    order = service.place_order(
        auth,
        items=[item.to_create() for item in body.items],
        total_amount=body.total_amount,
        payment_method=body.payment_method,
    )
    items = crud.get_order_items(session=session, order_ids=[order.id])[order.id]
    return OrderData.from_order(order, items)


@router.get("", response_model=list[OrderData])
def list_orders(session: SessionDep, auth: CurrentAuth) -> list[OrderData]:
    """当前用户的订单，按创建时间倒序"""
    rows = crud.get_orders_for_user(session=session, user_id=auth.user_id)
    return [OrderData.from_order(order, items) for order, items in rows]


@router.post("/payment-webhook", response_model=WebhookAck)
def payment_webhook(
    service: FulfillmentDep,
    body: PaymentWebhookRequest,
    x_webhook_secret: str | None = Header(default=None),
) -> WebhookAck:
    """
    支付网关通知

    配置了 PAYMENT_WEBHOOK_SECRET 时，网关必须在 ``x-webhook-secret`` 请求头中携带该密钥。
    """
    secret = settings.PAYMENT_WEBHOOK_SECRET
    if secret and not hmac.compare_digest(x_webhook_secret or "", secret):
        raise invalid_webhook_secret()
    if not body.order_id:
        raise missing_order_id()

    order = service.apply_payment_webhook(
        body.order_id,
        body.status,
        payment_id=body.payment_id,
        payload=body.model_dump(mode="json", by_alias=True),
    )
    logger.info("payment webhook for order %s (%s) processed", order.id, body.status)
    return WebhookAck(message="Webhook processed", order_id=order.id, status=OrderStatus(order.status))


@router.get("/{order_id}", response_model=OrderData)
def get_order(
    session: SessionDep, auth: CurrentAuth, service: FulfillmentDep, order_id: int
) -> OrderData:
    """订单详情（含明细），仅限下单用户和管理员"""
    order = service.get_order(auth, order_id)
    items = crud.get_order_items(session=session, order_ids=[order.id])[order.id]
    return OrderData.from_order(order, items)


@router.post("/{order_id}/cancel", response_model=OrderData)
def cancel_order(
    session: SessionDep, auth: CurrentAuth, service: FulfillmentDep, order_id: int
) -> OrderData:
    order = service.cancel_order(auth, order_id)
    items = crud.get_order_items(session=session, order_ids=[order.id])[order.id]
    return OrderData.from_order(order, items)

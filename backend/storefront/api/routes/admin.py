"""
管理员订单接口

所有接口都需要管理员 token。
"""
from fastapi import APIRouter
from sqlmodel import Session

from storefront import crud
from storefront.api.deps import AdminAuth, FulfillmentDep, SessionDep
from storefront.api.errors import order_not_found
from storefront.api.schemas import AdminOrderUpdateRequest, DeliveryAttemptData, OrderData
from storefront.models import User

router = APIRouter(prefix="/admin", tags=["admin"])


def _order_response(session: Session, order_id: int) -> OrderData:
    order = crud.get_order(session=session, order_id=order_id)
    if not order:
        raise order_not_found()
    items = crud.get_order_items(session=session, order_ids=[order.id])[order.id]
    return OrderData.from_order(order, items, session.get(User, order.user_id))


@router.get("/orders", response_model=list[OrderData])
def list_all_orders(session: SessionDep, auth: AdminAuth) -> list[OrderData]:
    """全部订单（含下单用户和明细），按创建时间倒序"""
    rows = crud.get_all_orders(session=session)
    return [OrderData.from_order(order, items, user) for order, user, items in rows]


@router.patch("/orders/{order_id}", response_model=OrderData)
def update_order(
    session: SessionDep,
    auth: AdminAuth,
    service: FulfillmentDep,
    order_id: int,
    body: AdminOrderUpdateRequest,
) -> OrderData:
    """
    修改订单状态和/或触发游戏内投递

    ``triggerDelivery`` 通过投递网关发送；发送失败时排期重试，订单状态不变。
    """
    order = service.admin_update_order(
        auth, order_id, status=body.status, trigger_delivery=body.trigger_delivery
    )
    return _order_response(session, order.id)


@router.post("/orders/{order_id}/confirm-pickup", response_model=OrderData)
def confirm_pickup(
    session: SessionDep, auth: AdminAuth, service: FulfillmentDep, order_id: int
) -> OrderData:
    order = service.confirm_pickup(auth, order_id)
    return _order_response(session, order.id)


@router.get("/orders/{order_id}/delivery-attempts", response_model=list[DeliveryAttemptData])
def list_delivery_attempts(
    auth: AdminAuth, service: FulfillmentDep, order_id: int
) -> list[DeliveryAttemptData]:
    attempts = service.list_delivery_attempts(auth, order_id)
    return [DeliveryAttemptData.from_attempt(a) for a in attempts]


@router.post("/retry-delivery/{order_id}", response_model=DeliveryAttemptData)
def retry_delivery(auth: AdminAuth, service: FulfillmentDep, order_id: int) -> DeliveryAttemptData:
    """手动排期一次投递重试，次数用尽时返回 400"""
    attempt = service.retry_delivery(auth, order_id)
    return DeliveryAttemptData.from_attempt(attempt)

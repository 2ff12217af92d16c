"""
订单履约服务（状态机）

``Order.status`` 只在 ``FulfillmentService`` 中修改。每个操作在一个数据库事务内完成并自行提交，
出错则整体回滚。通知在提交之后发送，失败不影响操作结果。

合法的状态流转::

    pending_payment -> paid | awaiting_pickup | failed | cancelled
    paid            -> awaiting_pickup | failed | cancelled
    awaiting_pickup -> completed | delivered | failed | cancelled

completed、delivered、failed、cancelled 为终态。
"""
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlmodel import Session

from storefront import crud
from storefront.api.errors import (
    AppError,
    RetryExhaustedError,
    empty_order,
    forbidden,
    insufficient_stock,
    invalid_state,
    order_not_found,
    product_not_found,
)
from storefront.core.security import AuthContext
from storefront.enums import (
    CANCELLABLE_ORDER_STATUSES,
    DELIVERED_ORDER_STATUSES,
    TERMINAL_ORDER_STATUSES,
    DeliveryAttemptStatus,
    OrderStatus,
    WebhookSource,
)
from storefront.models import DeliveryAttempt, Order, OrderCreate, OrderItemCreate, OrderUpdate, utc_now
from storefront.services.delivery_gateway import DeliveryGateway, get_delivery_gateway
from storefront.services.notifier import Notifier, get_notifier

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending_payment: frozenset(
        {OrderStatus.paid, OrderStatus.awaiting_pickup, OrderStatus.failed, OrderStatus.cancelled}
    ),
    OrderStatus.paid: frozenset(
        {OrderStatus.awaiting_pickup, OrderStatus.failed, OrderStatus.cancelled}
    ),
    OrderStatus.awaiting_pickup: frozenset(
        {OrderStatus.completed, OrderStatus.delivered, OrderStatus.failed, OrderStatus.cancelled}
    ),
    OrderStatus.completed: frozenset(),
    OrderStatus.delivered: frozenset(),
    OrderStatus.failed: frozenset(),
    OrderStatus.cancelled: frozenset(),
}

# 支付网关状态 -> 订单状态
PAYMENT_STATUS_MAP: dict[str, OrderStatus] = {
    "approved": OrderStatus.awaiting_pickup,
    "paid": OrderStatus.awaiting_pickup,
    "rejected": OrderStatus.failed,
    "failed": OrderStatus.failed,
}

DEFAULT_DELIVERY_ERROR = "Delivery failed"
DISPATCH_FAILED_ERROR = "MTA delivery failed"
ADMIN_DISPATCH_FAILED_ERROR = "MTA delivery failed - will retry"
DELIVERY_TIMEOUT_ERROR = "Delivery timed out"


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class FulfillmentService:
    def __init__(
        self,
        session: Session,
        delivery_gateway: DeliveryGateway | None = None,
        notifier: Notifier | None = None,
    ):
        self.session = session
        self.delivery_gateway = delivery_gateway or get_delivery_gateway()
        self.notifier = notifier or get_notifier()

    # ------------------------------------------------------------------
    # 内部方法
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _notify(self, send: Callable[..., None], *args: Any) -> None:
        try:
            send(self.session, *args)
        except Exception as e:
            logger.error("Notification %s failed: %s", getattr(send, "__name__", send), e)

    @staticmethod
    def _require_admin(auth: AuthContext) -> None:
        if not auth.is_admin:
            raise forbidden("Admin access required")

    def _lock_order(self, order_id: int) -> Order:
        order = crud.get_order_for_update(session=self.session, order_id=order_id)
        if not order:
            raise order_not_found()
        return order

    def _set_status(self, order: Order, target: OrderStatus, **changes: Any) -> Order:
        """
        将订单流转到 ``target``，``changes`` 在同一次更新中写入

        目标状态与当前相同时只写入 ``changes``。

        Raises:
            AppError: 400201，不允许的状态流转
        """
        current = OrderStatus(order.status)
        if target == current:
            if changes:
                crud.update_order(session=self.session, order_id=order.id, order_in=OrderUpdate(**changes))
            return order
        if not can_transition(current, target):
            raise invalid_state(f"Cannot change order status from {current.value} to {target.value}")

        crud.update_order(
            session=self.session,
            order_id=order.id,
            order_in=OrderUpdate(status=target, **changes),
        )
        logger.info("order %s: %s -> %s", order.id, current.value, target.value)
        return order

    def _record_delivery_failure(
        self,
        order: Order,
        error: str,
        *,
        now: datetime | None = None,
        delivery_error: str | None = None,
    ) -> DeliveryAttempt | None:
        """
        记录一次投递失败：关闭进行中的尝试并排期下一次

        重试未用尽时，``delivery_error`` 会覆盖写入订单的错误信息。

        Returns:
            新排期的尝试；重试用尽、订单已标记失败时返回 None
        """
        crud.resolve_open_attempts(
            session=self.session,
            order_id=order.id,
            status=DeliveryAttemptStatus.failed,
            error=error,
        )
        try:
            attempt = crud.schedule_retry(
                session=self.session, order_id=order.id, previous_error=error, now=now
            )
        except RetryExhaustedError:
            logger.warning("order %s exhausted its delivery retries: %s", order.id, error)
            self._set_status(order, OrderStatus.failed, delivery_error=f"{error}. Max retries exceeded.")
            return None

        message = delivery_error or (
            f"{error}. Retry scheduled for {attempt.attempt_number}/{crud.MAX_DELIVERY_ATTEMPTS}"
        )
        crud.update_order(
            session=self.session,
            order_id=order.id,
            order_in=OrderUpdate(delivery_error=message),
        )
        return attempt

    # ------------------------------------------------------------------
    # 下单
    # ------------------------------------------------------------------

    def place_order(
        self,
        auth: AuthContext,
        items: list[OrderItemCreate],
        total_amount: Decimal,
        payment_method: str | None = None,
    ) -> Order:
        """
        根据下单请求创建订单

        写入前先校验所有商品。库存扣减、订单及明细、清空购物车在同一事务内提交；
        并发抢购失败时整体回滚。

        Raises:
            AppError: 400101 空订单，404101 商品不存在，400102 库存不足
        """
        if not items:
            raise empty_order()

        names: dict[int, str] = {}
        for item in items:
            product = crud.get_product(session=self.session, product_id=item.product_id)
            if not product:
                raise product_not_found(item.product_id)
            if not crud.has_stock(product, item.quantity):
                raise insufficient_stock(product.name)
            names[item.product_id] = product.name

        with self._transaction():
            for item in items:
                if not crud.decrement_stock(
                    session=self.session, product_id=item.product_id, quantity=item.quantity
                ):
                    logger.info("stock race lost on product %s", item.product_id)
                    raise insufficient_stock(names[item.product_id])

            order = crud.create_order(
                session=self.session,
                order_in=OrderCreate(
                    user_id=auth.user_id,
                    total_amount=total_amount,
                    payment_method=payment_method,
                ),
                items_in=items,
            )
            crud.clear_cart(session=self.session, user_id=auth.user_id)

        self.session.refresh(order)
        logger.info("order %s placed by user %s (%s items)", order.id, auth.user_id, len(items))
        self._notify(self.notifier.order_confirmation, order)
        return order

    # ------------------------------------------------------------------
    # 支付
    # ------------------------------------------------------------------

    def apply_payment_webhook(
        self,
        order_id: int,
        gateway_status: str,
        payment_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Order:
        """
        处理支付网关通知

        approved/paid -> awaiting_pickup，rejected/failed -> failed，其他状态忽略。
        重复通知不做处理；订单已无法到达目标状态时（如已取消的订单收到支付成功）记录警告后忽略。
        """
        if not crud.get_order(session=self.session, order_id=order_id):
            raise order_not_found()

        status_key = (gateway_status or "").lower()
        target = PAYMENT_STATUS_MAP.get(status_key)
        approved = False

        with self._transaction():
            if payment_id and not crud.record_event(
                session=self.session,
                source=WebhookSource.payment,
                event_key=f"{payment_id}:{status_key}",
                order_id=order_id,
                payload=payload,
            ):
                return self._reload(order_id)

            order = self._lock_order(order_id)
            if target is None:
                logger.info("ignoring payment status %r for order %s", gateway_status, order_id)
                return order

            current = OrderStatus(order.status)
            if current == target:
                return order
            if not can_transition(current, target):
                logger.warning(
                    "payment %s for order %s ignored: order is %s",
                    status_key,
                    order_id,
                    current.value,
                )
                return order

            changes: dict[str, Any] = {}
            if payment_id:
                changes["payment_id"] = payment_id
            self._set_status(order, target, **changes)
            approved = target == OrderStatus.awaiting_pickup

        self.session.refresh(order)
        if approved:
            self._notify(self.notifier.pickup_reminder, order)
        return order

    # ------------------------------------------------------------------
    # 管理员操作
    # ------------------------------------------------------------------

    def confirm_pickup(self, auth: AuthContext, order_id: int) -> Order:
        """管理员确认玩家已在游戏内领取物品"""
        self._require_admin(auth)
        with self._transaction():
            order = self._lock_order(order_id)
            current = OrderStatus(order.status)
            if current == OrderStatus.completed:
                return order
            if current != OrderStatus.awaiting_pickup:
                raise invalid_state("Order must be awaiting pickup to confirm")
            self._set_status(order, OrderStatus.completed, mta_delivered=True)

        self.session.refresh(order)
        return order

    def admin_update_order(
        self,
        auth: AuthContext,
        order_id: int,
        status: OrderStatus | None = None,
        trigger_delivery: bool = False,
    ) -> Order:
        """
        管理员修改订单状态和/或手动投递

        ``trigger_delivery`` 通过投递网关发送；发送出错与投递失败回调同样处理：
        排期重试，重试用尽则订单失败。
        """
        self._require_admin(auth)
        notify: bool | None = None

        with self._transaction():
            order = self._lock_order(order_id)
            if status is not None:
                self._apply_admin_status(order, status)

            if trigger_delivery:
                current = OrderStatus(order.status)
                if current in DELIVERED_ORDER_STATUSES:
                    logger.info("order %s already delivered, not dispatching again", order_id)
                elif current != OrderStatus.awaiting_pickup:
                    raise invalid_state("Only orders awaiting pickup can be delivered")
                else:
                    items = crud.get_order_items(session=self.session, order_ids=[order.id])[order.id]
                    try:
                        self.delivery_gateway.dispatch(order, items)
                    except Exception as e:
                        logger.error("Failed to dispatch order %s: %s", order_id, e)
                        attempt = self._record_delivery_failure(
                            order, DISPATCH_FAILED_ERROR, delivery_error=ADMIN_DISPATCH_FAILED_ERROR
                        )
                        if attempt is None:
                            notify = False
                    else:
                        self._set_status(
                            order,
                            OrderStatus.delivered,
                            mta_delivered=True,
                            delivery_error=None,
                        )
                        notify = True

        self.session.refresh(order)
        if notify is not None:
            self._notify(self.notifier.delivery_result, order, notify)
        return order

    def _apply_admin_status(self, order: Order, target: OrderStatus) -> None:
        current = OrderStatus(order.status)
        if target == current:
            return
        if target == OrderStatus.cancelled:
            self._cancel(order)
        elif target in DELIVERED_ORDER_STATUSES:
            self._set_status(order, target, mta_delivered=True)
        else:
            self._set_status(order, target)

    def retry_delivery(self, auth: AuthContext, order_id: int) -> DeliveryAttempt:
        """
        管理员手动排期一次投递

        Raises:
            RetryExhaustedError: 重试次数已用尽，订单保持不变
        """
        self._require_admin(auth)
        with self._transaction():
            order = self._lock_order(order_id)
            current = OrderStatus(order.status)
            if current in TERMINAL_ORDER_STATUSES:
                raise invalid_state(f"Cannot retry delivery of a {current.value} order")
            attempt = crud.schedule_retry(
                session=self.session,
                order_id=order.id,
                previous_error=order.delivery_error or "Manual retry",
            )

        self.session.refresh(attempt)
        return attempt

    def list_delivery_attempts(self, auth: AuthContext, order_id: int) -> list[DeliveryAttempt]:
        self._require_admin(auth)
        if not crud.get_order(session=self.session, order_id=order_id):
            raise order_not_found()
        return crud.list_attempts(session=self.session, order_id=order_id)

    # ------------------------------------------------------------------
    # 用户操作
    # ------------------------------------------------------------------

    def cancel_order(self, auth: AuthContext, order_id: int) -> Order:
        """用户取消订单，商品退回库存"""
        with self._transaction():
            order = self._lock_order(order_id)
            if not auth.is_admin and order.user_id != auth.user_id:
                raise forbidden("You can only cancel your own orders")
            self._cancel(order)

        self.session.refresh(order)
        return order

    def _cancel(self, order: Order) -> None:
        """订单改为 cancelled 并退回库存"""
        current = OrderStatus(order.status)
        if current not in CANCELLABLE_ORDER_STATUSES:
            raise invalid_state(f"Cannot cancel an order that is {current.value}")

        self._set_status(order, OrderStatus.cancelled)
        items = crud.get_order_items(session=self.session, order_ids=[order.id])[order.id]
        for item in items:
            crud.restore_stock(
                session=self.session, product_id=item.product_id, quantity=item.quantity
            )

    def get_order(self, auth: AuthContext, order_id: int) -> Order:
        order = crud.get_order(session=self.session, order_id=order_id)
        if not order:
            raise order_not_found()
        if not auth.is_admin and order.user_id != auth.user_id:
            raise forbidden("You can only view your own orders")
        return order

    # ------------------------------------------------------------------
    # 游戏服务器回调
    # ------------------------------------------------------------------

    def apply_delivery_callback(
        self,
        order_id: int,
        success: bool,
        error: str | None = None,
        delivery_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Order:
        """
        处理游戏服务器的投递回报

        成功：订单标记为 delivered（completed 订单保持原状态）。因重试用尽而失败的订单，
        游戏服务器确认物品已到账时仍标记为 delivered。
        失败：排期重试，重试用尽后订单失败。已是终态的订单收到失败回报时不占用重试次数。
        """
        if not crud.get_order(session=self.session, order_id=order_id):
            raise order_not_found()

        notify: bool | None = None
        with self._transaction():
            if delivery_id and not crud.record_event(
                session=self.session,
                source=WebhookSource.delivery,
                event_key=delivery_id,
                order_id=order_id,
                payload=payload,
            ):
                return self._reload(order_id)

            order = self._lock_order(order_id)
            current = OrderStatus(order.status)

            if success:
                if current in DELIVERED_ORDER_STATUSES:
                    if not order.mta_delivered or order.delivery_error:
                        crud.update_order(
                            session=self.session,
                            order_id=order.id,
                            order_in=OrderUpdate(mta_delivered=True, delivery_error=None),
                        )
                elif current == OrderStatus.awaiting_pickup:
                    self._set_status(
                        order, OrderStatus.delivered, mta_delivered=True, delivery_error=None
                    )
                    notify = True
                elif current == OrderStatus.failed and crud.count_attempts(
                    session=self.session, order_id=order.id
                ):
                    # 重试用尽后游戏服务器仍然发放了物品
                    logger.warning("order %s delivered after its retries were exhausted", order_id)
                    crud.update_order(
                        session=self.session,
                        order_id=order.id,
                        order_in=OrderUpdate(
                            status=OrderStatus.delivered, mta_delivered=True, delivery_error=None
                        ),
                    )
                    notify = True
                else:
                    raise invalid_state(f"Cannot mark a {current.value} order as delivered")
                crud.resolve_open_attempts(
                    session=self.session,
                    order_id=order.id,
                    status=DeliveryAttemptStatus.succeeded,
                )
            else:
                error = error or DEFAULT_DELIVERY_ERROR
                if current in TERMINAL_ORDER_STATUSES:
                    logger.info(
                        "delivery failure for %s order %s acknowledged: %s",
                        current.value,
                        order_id,
                        error,
                    )
                    return order
                if self._record_delivery_failure(order, error) is None:
                    notify = False

        self.session.refresh(order)
        if notify is not None:
            self._notify(self.notifier.delivery_result, order, notify)
        return order

    # ------------------------------------------------------------------
    # 重试轮询
    # ------------------------------------------------------------------

    def dispatch_due_retries(self, now: datetime | None = None, limit: int = 50) -> int:
        """
        发送所有到期的投递尝试

        每个尝试先通过条件更新领取，多个轮询进程并行时也不会重复发送。
        发送出错按投递失败处理；超过 ``PENDING_TIMEOUT_MINUTES`` 仍无回报的尝试同样按失败处理。

        Returns:
            本次发送的数量
        """
        now = now or utc_now()
        self._expire_stale_attempts(now, limit)

        due = [
            (attempt.id, attempt.order_id, attempt.attempt_number)
            for attempt in crud.list_due_attempts(session=self.session, now=now, limit=limit)
        ]
        dispatched = 0
        for attempt_id, order_id, attempt_number in due:
            try:
                sent, failed_order = self._dispatch_attempt(attempt_id, order_id, attempt_number)
            except AppError as e:
                logger.warning("attempt %s of order %s skipped: %s", attempt_id, order_id, e.message)
                continue
            if sent:
                dispatched += 1
            if failed_order is not None:
                self._notify(self.notifier.delivery_result, failed_order, False)

        if due:
            logger.info("dispatched %s of %s due delivery attempts", dispatched, len(due))
        return dispatched

    def _dispatch_attempt(
        self, attempt_id: int, order_id: int, attempt_number: int
    ) -> tuple[bool, Order | None]:
        with self._transaction():
            if not crud.claim_attempt(session=self.session, attempt_id=attempt_id):
                return False, None

            order = self._lock_order(order_id)
            current = OrderStatus(order.status)
            if current in TERMINAL_ORDER_STATUSES:
                crud.mark_attempt(
                    session=self.session,
                    attempt_id=attempt_id,
                    status=DeliveryAttemptStatus.failed,
                    error=f"Skipped: order is {current.value}",
                )
                return False, None

            items = crud.get_order_items(session=self.session, order_ids=[order.id])[order.id]
            try:
                self.delivery_gateway.dispatch(order, items, attempt_number=attempt_number)
            except Exception as e:
                logger.error("Failed to dispatch attempt %s of order %s: %s", attempt_number, order_id, e)
                if self._record_delivery_failure(order, DISPATCH_FAILED_ERROR) is None:
                    failed = order
                else:
                    failed = None
                return False, failed

        return True, None

    def _expire_stale_attempts(self, now: datetime, limit: int) -> None:
        stale = [
            (attempt.id, attempt.order_id)
            for attempt in crud.list_stale_attempts(session=self.session, now=now, limit=limit)
        ]
        for attempt_id, order_id in stale:
            try:
                failed_order = self._expire_attempt(attempt_id, order_id, now)
            except AppError as e:
                logger.warning("stale attempt %s of order %s skipped: %s", attempt_id, order_id, e.message)
                continue
            if failed_order is not None:
                self._notify(self.notifier.delivery_result, failed_order, False)

    def _expire_attempt(self, attempt_id: int, order_id: int, now: datetime) -> Order | None:
        with self._transaction():
            if not crud.expire_attempt(
                session=self.session, attempt_id=attempt_id, now=now, error=DELIVERY_TIMEOUT_ERROR
            ):
                return None

            order = self._lock_order(order_id)
            current = OrderStatus(order.status)
            if current in TERMINAL_ORDER_STATUSES:
                return None
            logger.warning("attempt %s of order %s got no report, counting it as failed", attempt_id, order_id)
            if self._record_delivery_failure(order, DELIVERY_TIMEOUT_ERROR, now=now) is None:
                return order
        return None

    def _reload(self, order_id: int) -> Order:
        order = crud.get_order(session=self.session, order_id=order_id)
        if not order:
            raise order_not_found()
        return order

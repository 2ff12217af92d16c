"""CRUD 操作"""
from .cart import clear_cart
from .delivery import (
    MAX_DELIVERY_ATTEMPTS,
    PENDING_TIMEOUT_MINUTES,
    RETRY_BASE_DELAY_MINUTES,
    claim_attempt,
    count_attempts,
    expire_attempt,
    list_attempts,
    list_due_attempts,
    list_stale_attempts,
    mark_attempt,
    resolve_open_attempts,
    retry_delay_minutes,
    schedule_retry,
)
from .events import record_event
from .inventory import decrement_stock, get_product, has_stock, restore_stock
from .orders import (
    create_order,
    get_all_orders,
    get_order,
    get_order_for_update,
    get_order_items,
    get_orders_for_user,
    update_order,
)

__all__ = [
    "clear_cart",
    "MAX_DELIVERY_ATTEMPTS",
    "PENDING_TIMEOUT_MINUTES",
    "RETRY_BASE_DELAY_MINUTES",
    "claim_attempt",
    "count_attempts",
    "expire_attempt",
    "list_attempts",
    "list_due_attempts",
    "list_stale_attempts",
    "mark_attempt",
    "resolve_open_attempts",
    "retry_delay_minutes",
    "schedule_retry",
    "record_event",
    "decrement_stock",
    "get_product",
    "has_stock",
    "restore_stock",
    "create_order",
    "get_all_orders",
    "get_order",
    "get_order_for_update",
    "get_order_items",
    "get_orders_for_user",
    "update_order",
]

"""Webhook 事件 CRUD 操作，用于识别重复推送"""
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from storefront.enums import WebhookSource
from storefront.models import WebhookEvent

logger = logging.getLogger(__name__)


def record_event(
    *,
    session: Session,
    source: WebhookSource,
    event_key: str,
    order_id: int,
    payload: dict[str, Any] | None = None,
) -> bool:
    """
    记录收到的事件

    必须在本次请求的其他写操作之前调用：重复事件会触发 (source, event_key)
    唯一约束，事务随之回滚。

    Returns:
        首次出现返回 True，重复事件返回 False
    """
    try:
        session.add(
            WebhookEvent(
                source=source.value,
                event_key=event_key,
                order_id=order_id,
                payload=payload,
            )
        )
        session.flush()
    except IntegrityError:
        session.rollback()
        logger.info("duplicate %s event %s for order %s", source.value, event_key, order_id)
        return False
    return True

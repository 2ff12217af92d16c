"""
定时任务逻辑

dispatch_delivery_retries 由调度器执行。每个到期的尝试发送前都会被原子领取，
多个进程同时运行也不会重复发送。
"""
import logging

from sqlmodel import Session

from storefront.core.config import settings
from storefront.core.db import engine
from storefront.services.fulfillment import FulfillmentService

logger = logging.getLogger(__name__)


def dispatch_delivery_retries() -> int:
    """发送到期的投递重试，返回发送数量"""
    with Session(engine) as session:
        try:
            return FulfillmentService(session).dispatch_due_retries(
                limit=settings.DELIVERY_RETRY_BATCH_SIZE
            )
        except Exception as exc:
            logger.error("Delivery retry scan failed: %s", exc)
            raise

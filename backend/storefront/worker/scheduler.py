"""
定时任务调度器（投递重试轮询）

运行方式：
    python -m storefront.worker.scheduler
"""

import logging
from datetime import timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from storefront.core.config import settings
from storefront.worker.tasks import dispatch_delivery_retries

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_scheduler() -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone=timezone.utc)
    scheduler.add_job(
        dispatch_delivery_retries,
        IntervalTrigger(seconds=settings.DELIVERY_RETRY_SCAN_SECONDS),
        id="delivery_retry_poller",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def main() -> None:
    scheduler = build_scheduler()
    logger.info(
        "Scheduler started. Delivery retries are scanned every %ss.",
        settings.DELIVERY_RETRY_SCAN_SECONDS,
    )
    scheduler.start()


if __name__ == "__main__":
    main()

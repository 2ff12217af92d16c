"""
投递尝试 CRUD 操作

每次游戏内投递失败都会按指数退避（5、10、20 分钟）排期一次新的尝试。
每个订单最多 ``MAX_DELIVERY_ATTEMPTS`` 次，超过后抛出 ``RetryExhaustedError``，
订单如何处理由调用方决定。
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from storefront.api.errors import RetryExhaustedError, attempt_conflict
from storefront.enums import DeliveryAttemptStatus
from storefront.models import DeliveryAttempt, utc_now

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 3
RETRY_BASE_DELAY_MINUTES = 5
# 已发送但超过该时长没有回报的尝试按失败处理
PENDING_TIMEOUT_MINUTES = 60


def retry_delay_minutes(attempt_number: int) -> int:
    """第 ``attempt_number`` 次（从 1 开始）的退避分钟数：5, 10, 20 ..."""
    return RETRY_BASE_DELAY_MINUTES * 2 ** (attempt_number - 1)


def list_attempts(*, session: Session, order_id: int) -> list[DeliveryAttempt]:
    """订单的投递尝试，最新的在前"""
    statement = (
        select(DeliveryAttempt)
        .where(DeliveryAttempt.order_id == order_id)
        .order_by(col(DeliveryAttempt.attempt_number).desc())
    )
    return list(session.exec(statement).all())


def count_attempts(*, session: Session, order_id: int) -> int:
    statement = (
        select(func.count())
        .select_from(DeliveryAttempt)
        .where(DeliveryAttempt.order_id == order_id)
    )
    return session.exec(statement).one()


def schedule_retry(
    *,
    session: Session,
    order_id: int,
    previous_error: str,
    now: datetime | None = None,
) -> DeliveryAttempt:
    """
    为订单排期下一次投递

    调用方需先锁住订单行（``get_order_for_update``）；漏网的并发写入由
    (order_id, attempt_number) 唯一约束兜住，返回 409。

    Raises:
        RetryExhaustedError: 已有 MAX_DELIVERY_ATTEMPTS 次尝试
        AppError: 409301，序号已被其他写入占用
    """
    attempts = count_attempts(session=session, order_id=order_id)
    if attempts >= MAX_DELIVERY_ATTEMPTS:
        raise RetryExhaustedError(order_id=order_id, max_attempts=MAX_DELIVERY_ATTEMPTS)

    now = now or utc_now()
    attempt_number = attempts + 1
    attempt = DeliveryAttempt(
        order_id=order_id,
        attempt_number=attempt_number,
        status=DeliveryAttemptStatus.scheduled.value,
        error=previous_error,
        next_retry_at=now + timedelta(minutes=retry_delay_minutes(attempt_number)),
        created_at=now,
        updated_at=now,
    )
    session.add(attempt)
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        logger.warning("attempt %s of order %s already taken: %s", attempt_number, order_id, e)
        raise attempt_conflict() from e

    logger.info(
        "scheduled delivery attempt %s/%s for order %s at %s",
        attempt_number,
        MAX_DELIVERY_ATTEMPTS,
        order_id,
        attempt.next_retry_at,
    )
    return attempt


def resolve_open_attempts(
    *,
    session: Session,
    order_id: int,
    status: DeliveryAttemptStatus,
    error: str | None = None,
) -> int:
    """按回报结果关闭订单所有 pending 的尝试"""
    values: dict = {"status": status.value, "updated_at": utc_now()}
    if error is not None:
        values["error"] = error
    result = session.exec(  # type: ignore[call-overload]
        update(DeliveryAttempt)
        .where(
            DeliveryAttempt.order_id == order_id,
            DeliveryAttempt.status == DeliveryAttemptStatus.pending.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    for obj in list(session.identity_map.values()):
        if isinstance(obj, DeliveryAttempt) and obj.order_id == order_id:
            session.expire(obj)
    return result.rowcount


def list_due_attempts(
    *, session: Session, now: datetime | None = None, limit: int = 50
) -> list[DeliveryAttempt]:
    """已到重试时间的 scheduled 尝试，最早的在前"""
    now = now or utc_now()
    statement = (
        select(DeliveryAttempt)
        .where(
            DeliveryAttempt.status == DeliveryAttemptStatus.scheduled.value,
            col(DeliveryAttempt.next_retry_at) <= now,
        )
        .order_by(col(DeliveryAttempt.next_retry_at), col(DeliveryAttempt.id))
        .limit(limit)
    )
    return list(session.exec(statement).all())


def claim_attempt(*, session: Session, attempt_id: int) -> bool:
    """
    领取一次尝试（scheduled -> pending）

    UPDATE 以状态仍为 scheduled 为条件，只有一个调用方能领取成功。
    """
    result = session.exec(  # type: ignore[call-overload]
        update(DeliveryAttempt)
        .where(
            DeliveryAttempt.id == attempt_id,
            DeliveryAttempt.status == DeliveryAttemptStatus.scheduled.value,
        )
        .values(status=DeliveryAttemptStatus.pending.value, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    claimed = result.rowcount == 1
    attempt = session.get(DeliveryAttempt, attempt_id)
    if attempt is not None:
        session.expire(attempt)
    return claimed


def mark_attempt(
    *,
    session: Session,
    attempt_id: int,
    status: DeliveryAttemptStatus,
    error: str | None = None,
) -> DeliveryAttempt | None:
    attempt = session.get(DeliveryAttempt, attempt_id)
    if not attempt:
        return None
    attempt.status = status.value
    if error is not None:
        attempt.error = error
    attempt.updated_at = utc_now()
    session.add(attempt)
    session.flush()
    return attempt


def list_stale_attempts(
    *, session: Session, now: datetime | None = None, limit: int = 50
) -> list[DeliveryAttempt]:
    """已发送给游戏服务器但超时没有回报的尝试"""
    cutoff = (now or utc_now()) - timedelta(minutes=PENDING_TIMEOUT_MINUTES)
    statement = (
        select(DeliveryAttempt)
        .where(
            DeliveryAttempt.status == DeliveryAttemptStatus.pending.value,
            col(DeliveryAttempt.updated_at) <= cutoff,
        )
        .order_by(col(DeliveryAttempt.updated_at), col(DeliveryAttempt.id))
        .limit(limit)
    )
    return list(session.exec(statement).all())


def expire_attempt(
    *, session: Session, attempt_id: int, now: datetime | None = None, error: str
) -> bool:
    """
    将超过 ``PENDING_TIMEOUT_MINUTES`` 的 pending 尝试标记为失败

    与 ``claim_attempt`` 一样是条件更新：期间已有回报或被其他轮询进程处理时返回 False。
    """
    now = now or utc_now()
    cutoff = now - timedelta(minutes=PENDING_TIMEOUT_MINUTES)
    result = session.exec(  # type: ignore[call-overload]
        update(DeliveryAttempt)
        .where(
            DeliveryAttempt.id == attempt_id,
            DeliveryAttempt.status == DeliveryAttemptStatus.pending.value,
            col(DeliveryAttempt.updated_at) <= cutoff,
        )
        .values(status=DeliveryAttemptStatus.failed.value, error=error, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    expired = result.rowcount == 1
    attempt = session.get(DeliveryAttempt, attempt_id)
    if attempt is not None:
        session.expire(attempt)
    return expired

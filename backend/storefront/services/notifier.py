"""
用户通知（邮件）

发送失败只记录日志，不影响触发它的订单操作。未配置 ``SMTP_HOST`` 时只写日志。
"""
import logging
import smtplib
from email.message import EmailMessage

from sqlmodel import Session

from storefront.core.config import settings
from storefront.models import Order, User

logger = logging.getLogger(__name__)


class Notifier:
    def send(self, *, to: str, subject: str, body: str) -> bool:
        """发送一封邮件，返回是否已发出"""
        logger.info("notify %s: %s", to, subject)
        if not settings.SMTP_HOST or not settings.EMAILS_FROM_EMAIL:
            return False

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = (
            f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL}>"
            if settings.EMAILS_FROM_NAME
            else settings.EMAILS_FROM_EMAIL
        )
        message["To"] = to
        message.set_content(body)

        try:
            smtp_class = smtplib.SMTP_SSL if settings.SMTP_SSL else smtplib.SMTP
            with smtp_class(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
                if settings.SMTP_TLS and not settings.SMTP_SSL:
                    smtp.starttls()
                if settings.SMTP_USER:
                    smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD or "")
                smtp.send_message(message)
        except Exception as e:
            logger.error("Failed to send email to %s: %s", to, e)
            return False
        return True

    def _email_for(self, session: Session, order: Order) -> str | None:
        user = session.get(User, order.user_id)
        if not user or not user.email:
            logger.warning("order %s has no notification address", order.id)
            return None
        return user.email

    def order_confirmation(self, session: Session, order: Order) -> None:
        to = self._email_for(session, order)
        if to:
            self.send(
                to=to,
                subject=f"Order #{order.id} received",
                body=(
                    f"Thanks for your purchase! Your order #{order.id} "
                    f"({order.total_amount}) is waiting for payment."
                ),
            )

    def pickup_reminder(self, session: Session, order: Order) -> None:
        to = self._email_for(session, order)
        if to:
            link = f"\n\n{settings.STOREFRONT_URL}/orders" if settings.STOREFRONT_URL else ""
            self.send(
                to=to,
                subject=f"Order #{order.id} is ready for pickup",
                body=(
                    f"Payment for order #{order.id} was confirmed. "
                    f"Log in to the game server to receive your items.{link}"
                ),
            )

    def delivery_result(self, session: Session, order: Order, success: bool) -> None:
        to = self._email_for(session, order)
        if not to:
            return
        if success:
            subject = f"Order #{order.id} delivered"
            body = f"The items of order #{order.id} were delivered to your game account."
        else:
            subject = f"Order #{order.id} could not be delivered"
            body = (
                f"We could not deliver order #{order.id}: {order.delivery_error}. "
                "Please contact support."
            )
        self.send(to=to, subject=subject, body=body)


def get_notifier() -> Notifier:
    return Notifier()

"""In-app notifications with an optional Telegram push.

Delivery is best effort: every public helper logs and swallows its own
failures so a notification problem never undoes a billing transition.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_server.models.notification import Notification
from billing_server.models.payment import Payment
from billing_server.models.user import User
from telegram_bot import notify

logger = logging.getLogger(__name__)


def _jsonable(data: dict) -> dict:
    out = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif hasattr(value, "value"):
            value = value.value
        elif value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        out[key] = value
    return out


async def create_notification(
    db: AsyncSession, user: User, title: str, message: str, data: dict = None, type_: str = "system"
) -> Optional[Notification]:
    # A failed commit rolls back and expires ORM instances
    user_id, chat_id = user.id, user.telegram_id
    try:
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type_,
            data=_jsonable(data or {}),
        )
        db.add(notification)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Failed to store notification for user %s", user_id)
        return None

    if chat_id:
        await notify.send_telegram_message(chat_id=chat_id, text=f"{title}\n{message}")
    return notification


async def notify_payment_approved(
    db: AsyncSession, payment: Payment, user: User, expires_at: Optional[datetime]
) -> None:
    until = expires_at.strftime("%d.%m.%Y") if expires_at else "your subscription ends"
    message = (
        f"Your payment for {payment.package_name} ({payment.amount}) has been approved. "
        f"Pro access is active until {until}."
    )
    await create_notification(
        db,
        user,
        "🎉 Payment approved",
        message,
        data={
            "payment_id": payment.id,
            "package_name": payment.package_name,
            "amount": payment.amount,
            "premium_expires_at": expires_at,
            "action": "payment_approved",
        },
    )


async def notify_admins_proof_uploaded(db: AsyncSession, payment: Payment, uploader: User) -> None:
    try:
        admins = (await db.execute(select(User.id, User.telegram_id).filter_by(role="admin"))).all()
    except Exception:
        logger.exception("Could not load admins for payment %s", payment.id)
        return

    who = uploader.name or uploader.email or f"User {uploader.id}"
    message = (
        f"{who} uploaded a payment proof for {payment.package_name} ({payment.amount}). "
        "Please verify."
    )
    data = {
        "payment_id": payment.id,
        "user_id": uploader.id,
        "package_name": payment.package_name,
        "amount": payment.amount,
        "action": "payment_proof_uploaded",
    }
    # Rows, not ORM instances: one failed insert must not expire the rest
    for admin in admins:
        await create_notification(db, admin, "💰 New payment proof", message, data=data)


async def alert_partial_approval(payment_id: int, step: str, error: str) -> None:
    try:
        await notify.alert_operator(
            f"Payment {payment_id} is approved but step '{step}' failed: {error}. "
            "Resume it from the admin panel or run reconcile_payments.py."
        )
    except Exception:
        logger.exception("Operator alert for payment %s could not be sent", payment_id)

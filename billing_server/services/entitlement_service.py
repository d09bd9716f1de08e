"""Premium entitlement of a :class:`User`.

This module is the only writer of ``is_premium``, ``premium_expires_at`` and
the gateway correlation references. Feature gates must go through
:func:`is_active`; the stored flag alone goes stale once the expiry passes.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from billing_server.models.enums import PackageType
from billing_server.models.user import User
from billing_server.services.errors import UserNotFound
from billing_server.utils import add_months, utcnow

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(
        select(User).filter_by(id=user_id).execution_options(populate_existing=True)
    )
    user = result.scalars().first()
    if user is None:
        raise UserNotFound(user_id)
    return user


async def grant(
    db: AsyncSession,
    user_id: int,
    duration_months: Optional[int],
    *,
    start: datetime = None,
    customer_ref: str = None,
    subscription_ref: str = None,
) -> Optional[datetime]:
    """Activate premium for ``duration_months`` calendar months from ``start``.

    ``duration_months=None`` grants without expiry (used while a gateway
    subscription governs access). Calling again with the same ``start`` yields
    the same expiry, so a retried grant is safe. Returns the expiry.
    """
    start = start or utcnow()
    expires_at = add_months(start, duration_months) if duration_months is not None else None

    values = {"is_premium": True, "premium_expires_at": expires_at}
    if customer_ref:
        values["gateway_customer_ref"] = customer_ref
    if subscription_ref:
        values["gateway_subscription_ref"] = subscription_ref

    # One statement: flag and expiry are never written separately
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise UserNotFound(user_id)
    await db.commit()

    logger.info("Premium granted to user %s until %s", user_id, expires_at or "further notice")
    return expires_at


async def revoke(db: AsyncSession, user_id: int) -> None:
    """Deactivate premium. The last expiry stays on record."""
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(is_premium=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise UserNotFound(user_id)
    await db.commit()
    logger.info("Premium revoked for user %s", user_id)


def is_entitlement_active(user: User, now: datetime = None) -> bool:
    if not user.is_premium:
        return False
    if user.premium_expires_at is None:
        return True
    return user.premium_expires_at > (now or utcnow())


async def is_active(db: AsyncSession, user_id: int, now: datetime = None) -> bool:
    user = await get_user(db, user_id)
    return is_entitlement_active(user, now)


async def current_tier(db: AsyncSession, user_id: int, now: datetime = None) -> PackageType:
    if await is_active(db, user_id, now):
        return PackageType.PRO
    return PackageType.FREE


async def find_user_by_subscription(db: AsyncSession, subscription_ref: str):
    result = await db.execute(select(User).filter_by(gateway_subscription_ref=subscription_ref))
    return result.scalars().first()


async def find_user_by_customer(db: AsyncSession, customer_ref: str):
    result = await db.execute(select(User).filter_by(gateway_customer_ref=customer_ref))
    return result.scalars().first()

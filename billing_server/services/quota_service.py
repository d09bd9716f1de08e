"""Daily usage quota per user, capped by subscription tier."""

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_server import config
from billing_server.models.enums import PackageType, QuotaAction
from billing_server.models.usage_limit import UsageLimit
from billing_server.services.errors import QuotaExceeded
from billing_server.utils import today_key

logger = logging.getLogger(__name__)


def tier_limits(tier) -> dict:
    """Return ``{"frame_upload_limit": ..., "ai_generation_limit": ...}`` for ``tier``."""
    caps = config.TIER_LIMITS[PackageType(tier).value]
    return {f"{action.value}_limit": caps[action.value] for action in QuotaAction}


async def _find(db: AsyncSession, user_id: int, day: str):
    result = await db.execute(
        select(UsageLimit)
        .filter_by(user_id=user_id, date=day)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_or_create_today(
    db: AsyncSession, user_id: int, tier=PackageType.FREE, now: datetime = None
) -> UsageLimit:
    """Return today's usage record, creating it with zero counts if absent.

    When the record was created under a different tier its limits are
    re-derived for ``tier``; counts are kept.
    """
    tier = PackageType(tier)
    day = today_key(now)

    record = await _find(db, user_id, day)
    if record is None:
        record = UsageLimit(user_id=user_id, date=day, package_type=tier.value, **tier_limits(tier))
        db.add(record)
        try:
            await db.commit()
            return record
        except IntegrityError:
            # Another request created today's row first
            await db.rollback()
            record = await _find(db, user_id, day)

    if record.package_type != tier.value:
        await db.execute(
            update(UsageLimit)
            .where(UsageLimit.id == record.id)
            .values(package_type=tier.value, **tier_limits(tier))
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(record)
        logger.info("Usage limits for user %s on %s moved to tier %s", user_id, day, tier.value)
    return record


async def increment(db: AsyncSession, record: UsageLimit, action=QuotaAction.FRAME_UPLOAD) -> UsageLimit:
    """Consume one unit of ``action``; raise :class:`QuotaExceeded` at the cap.

    The cap check and the increment are one UPDATE statement, so concurrent
    callers cannot both pass a stale ``count < limit`` test.
    """
    action = QuotaAction(action)
    count_col, limit_col = UsageLimit.columns_for(action)
    result = await db.execute(
        update(UsageLimit)
        .where(UsageLimit.id == record.id, count_col < limit_col)
        .values({count_col: count_col + 1})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        await db.refresh(record)
        logger.info(
            "Quota exhausted: user=%s action=%s tier=%s limit=%s",
            record.user_id,
            action.value,
            record.package_type,
            record.limit_for(action),
        )
        raise QuotaExceeded(record.package_type, action.value, record.limit_for(action), config.UPGRADE_URL)

    await db.commit()
    await db.refresh(record)
    return record

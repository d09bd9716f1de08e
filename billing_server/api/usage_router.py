from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from billing_server.api.deps import current_actor, get_db
from billing_server.models.enums import QuotaAction
from billing_server.schemas.usage import EntitlementOut, UsageOut
from billing_server.services import entitlement_service, quota_service
from billing_server.services.actor import Actor

router = APIRouter(tags=["usage"])


@router.get("/entitlement", response_model=EntitlementOut)
async def my_entitlement(actor: Actor = Depends(current_actor), db: AsyncSession = Depends(get_db)):
    user = await entitlement_service.get_user(db, actor.user_id)
    active = entitlement_service.is_entitlement_active(user)
    return EntitlementOut(
        user_id=user.id,
        is_active=active,
        tier="pro" if active else "free",
        premium_expires_at=user.premium_expires_at,
    )


@router.get("/usage/today", response_model=UsageOut)
async def usage_today(actor: Actor = Depends(current_actor), db: AsyncSession = Depends(get_db)):
    tier = await entitlement_service.current_tier(db, actor.user_id)
    record = await quota_service.get_or_create_today(db, actor.user_id, tier)
    return UsageOut.model_validate(record)


@router.post("/usage/{action}", response_model=UsageOut)
async def consume_quota(action: str, actor: Actor = Depends(current_actor), db: AsyncSession = Depends(get_db)):
    """Spend one unit of today's quota before a rate-limited action runs.

    Answers 429 with the current tier and the upgrade path once the cap is hit.
    """
    try:
        action = QuotaAction(action)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown quota action '{action}'")
    tier = await entitlement_service.current_tier(db, actor.user_id)
    record = await quota_service.get_or_create_today(db, actor.user_id, tier)
    record = await quota_service.increment(db, record, action)
    return UsageOut.model_validate(record)

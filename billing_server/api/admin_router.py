import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billing_server.api.deps import admin_actor, get_db
from billing_server.schemas.payment import (
    ApprovalResponse,
    ApproveRequest,
    Pagination,
    PaymentList,
    PaymentOut,
    PaymentResponse,
    PremiumUpdate,
    RejectRequest,
)
from billing_server.schemas.usage import EntitlementOut
from billing_server.services import entitlement_service, payment_service
from billing_server.services.actor import Actor
from billing_server.services.payment_service import ApprovalOutcome

router = APIRouter(prefix="/admin", tags=["admin"])


def _approval_response(outcome: ApprovalOutcome, message: str) -> ApprovalResponse:
    if not outcome.completed:
        message = "Payment approved, but activation is incomplete; an operator has been alerted"
    return ApprovalResponse(
        message=message,
        payment=PaymentOut.model_validate(outcome.payment),
        completed=outcome.completed,
        premium_expires_at=outcome.expires_at,
        failed_step=outcome.failed_step,
        error=outcome.error,
    )


@router.get("/payments", response_model=PaymentList)
async def list_payments(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(admin_actor),
    db: AsyncSession = Depends(get_db),
):
    payments, total = await payment_service.list_payments(db, actor, status=status, page=page, limit=limit)
    return PaymentList(
        payments=[PaymentOut.model_validate(p) for p in payments],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.put("/payments/{payment_id}/approve", response_model=ApprovalResponse)
async def approve_payment(
    payment_id: int,
    body: Optional[ApproveRequest] = None,
    actor: Actor = Depends(admin_actor),
    db: AsyncSession = Depends(get_db),
):
    notes = body.admin_notes if body else None
    outcome = await payment_service.approve_payment(db, actor, payment_id, notes=notes)
    return _approval_response(outcome, "Payment approved and user upgraded to Pro")


@router.put("/payments/{payment_id}/reject", response_model=PaymentResponse)
async def reject_payment(
    payment_id: int,
    body: RejectRequest,
    actor: Actor = Depends(admin_actor),
    db: AsyncSession = Depends(get_db),
):
    payment = await payment_service.reject_payment(
        db, actor, payment_id, body.rejection_reason, notes=body.admin_notes
    )
    return PaymentResponse(message="Payment rejected", payment=PaymentOut.model_validate(payment))


@router.post("/payments/{payment_id}/resume", response_model=ApprovalResponse)
async def resume_approval(
    payment_id: int,
    actor: Actor = Depends(admin_actor),
    db: AsyncSession = Depends(get_db),
):
    outcome = await payment_service.resume_approval(db, actor, payment_id)
    return _approval_response(outcome, "Approval steps completed")


@router.delete("/payments/cleanup-legacy")
async def cleanup_legacy_payments(actor: Actor = Depends(admin_actor), db: AsyncSession = Depends(get_db)):
    counts = await payment_service.cleanup_legacy_payments(db, actor)
    return {"success": True, "message": "Old payments cleaned up successfully", **counts}


@router.patch("/users/{user_id}/premium", response_model=EntitlementOut)
async def set_premium(
    user_id: int,
    body: PremiumUpdate,
    actor: Actor = Depends(admin_actor),
    db: AsyncSession = Depends(get_db),
):
    """Manually grant or revoke premium for a user."""
    if body.is_premium:
        await entitlement_service.grant(db, user_id, body.duration_months)
    else:
        await entitlement_service.revoke(db, user_id)
    user = await entitlement_service.get_user(db, user_id)
    active = entitlement_service.is_entitlement_active(user)
    return EntitlementOut(
        user_id=user.id,
        is_active=active,
        tier="pro" if active else "free",
        premium_expires_at=user.premium_expires_at,
    )

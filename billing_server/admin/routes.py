import os
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy import String, cast, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager
from starlette.status import HTTP_303_SEE_OTHER

from billing_server.api.deps import admin_actor, get_db
from billing_server.models.enums import ApprovalStep, PaymentStatus
from billing_server.models.payment import Payment
from billing_server.models.user import User
from billing_server.services import entitlement_service, payment_service
from billing_server.services.actor import Actor
from billing_server.services.errors import BillingError

admin_router = APIRouter()

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "templates"))


def _back(message: str = "") -> RedirectResponse:
    url = "/admin"
    if message:
        url += "?" + urlencode({"msg": message})
    return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)


@admin_router.get("/admin", response_class=HTMLResponse)
async def admin_dashboard(
    request: Request,
    status: str = "",
    q: str = "",
    msg: str = "",
    actor: Actor = Depends(admin_actor),
    db: AsyncSession = Depends(get_db),
):
    query = select(Payment).join(Payment.user).options(contains_eager(Payment.user))

    # --- search by email, name or payment id ---
    if q:
        query = query.where(
            or_(
                User.email.ilike(f"%{q}%"),
                User.name.ilike(f"%{q}%"),
                cast(Payment.id, String).ilike(f"%{q}%"),
            )
        )

    # --- status filter ---
    if status:
        query = query.where(Payment.status == payment_service.parse_status(status))

    payments = (await db.execute(query.order_by(Payment.created_at.desc(), Payment.id.desc()))).scalars().all()

    rows = []
    for payment in payments:
        user = payment.user
        rows.append({
            "id": payment.id,
            "user": user.email or user.name or user.id,
            "user_premium": "✅ Pro" if entitlement_service.is_entitlement_active(user) else "Free",
            "package": payment.package_name,
            "amount": payment.amount,
            "method": payment.payment_method.value,
            "status": payment.status.value,
            "proof_url": payment.payment_proof_url,
            "created_at": payment.created_at.strftime("%d.%m.%Y %H:%M"),
            "can_review": payment.status == PaymentStatus.PENDING_VERIFICATION,
            "needs_resume": (
                payment.approval_step is not None
                and payment.approval_step != ApprovalStep.QUOTA_PRIMED
            ),
            "rejection_reason": payment.rejection_reason or "",
        })

    return templates.TemplateResponse(request, "payments.html", {
        "payments": rows,
        "statuses": [s.value for s in PaymentStatus],
        "selected_status": status,
        "q": q,
        "msg": msg,
    })


@admin_router.post("/admin/payments/{payment_id}/approve")
async def approve_payment(
    payment_id: int,
    admin_notes: str = Form(""),
    actor: Actor = Depends(admin_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        outcome = await payment_service.approve_payment(db, actor, payment_id, notes=admin_notes)
    except BillingError as exc:
        return _back(exc.message)
    if not outcome.completed:
        return _back(f"Payment {payment_id} approved, but '{outcome.failed_step.value}' failed: {outcome.error}")
    return _back(f"Payment {payment_id} approved")


@admin_router.post("/admin/payments/{payment_id}/reject")
async def reject_payment(
    payment_id: int,
    rejection_reason: str = Form(""),
    admin_notes: str = Form(""),
    actor: Actor = Depends(admin_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        await payment_service.reject_payment(db, actor, payment_id, rejection_reason, notes=admin_notes)
    except BillingError as exc:
        return _back(exc.message)
    return _back(f"Payment {payment_id} rejected")


@admin_router.post("/admin/payments/{payment_id}/resume")
async def resume_payment(
    payment_id: int,
    actor: Actor = Depends(admin_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        outcome = await payment_service.resume_approval(db, actor, payment_id)
    except BillingError as exc:
        return _back(exc.message)
    if not outcome.completed:
        return _back(f"Payment {payment_id}: '{outcome.failed_step.value}' failed again: {outcome.error}")
    return _back(f"Payment {payment_id} activation completed")


@admin_router.post("/admin/payments/cleanup-legacy")
async def cleanup_legacy(actor: Actor = Depends(admin_actor), db: AsyncSession = Depends(get_db)):
    counts = await payment_service.cleanup_legacy_payments(db, actor)
    return _back(f"Legacy cleanup: deleted {counts['deleted']}, migrated {counts['updated']}")

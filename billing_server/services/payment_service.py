"""Lifecycle of :class:`Payment` records.

Manual bank transfer path::

    pending_payment --upload proof--> pending_verification --approve--> approved
                                                           --reject---> rejected
    rejected --upload proof--> pending_verification

Gateway purchases are inserted directly as ``approved`` by
:mod:`billing_server.services.gateway_service`.

Every status change is a single ``UPDATE ... WHERE status IN (...)`` whose
affected-row count decides the outcome, so two admins approving the same
payment at once cannot both succeed.

Approval is a saga of independently committed steps (mark approved, grant
entitlement, prime today's quota). ``Payment.approval_step`` records the last
committed step so :func:`resume_approval` can re-run only what is missing.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, inspect, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from billing_server import config
from billing_server.models.enums import (
    OPEN_STATUSES,
    ApprovalStep,
    PackageType,
    PaymentMethod,
    PaymentStatus,
)
from billing_server.models.payment import Payment
from billing_server.services import entitlement_service, notification_service, quota_service
from billing_server.services.actor import Actor
from billing_server.services.errors import (
    AdminRequired,
    DuplicatePendingPayment,
    InvalidRequest,
    InvalidStateTransition,
    MissingReason,
    NotPaymentOwner,
    PaymentNotFound,
)
from billing_server.utils import utcnow

logger = logging.getLogger(__name__)

# status -> statuses it may move to
TRANSITIONS = {
    PaymentStatus.PENDING_PAYMENT: frozenset({PaymentStatus.PENDING_VERIFICATION}),
    PaymentStatus.PENDING_VERIFICATION: frozenset({PaymentStatus.APPROVED, PaymentStatus.REJECTED}),
    PaymentStatus.REJECTED: frozenset({PaymentStatus.PENDING_VERIFICATION}),
    PaymentStatus.APPROVED: frozenset(),
}


def allowed_sources(target: PaymentStatus) -> List[PaymentStatus]:
    return [status for status, targets in TRANSITIONS.items() if target in targets]


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in TRANSITIONS.get(PaymentStatus(current), frozenset())


@dataclass
class ApprovalOutcome:
    """Result of running the approval saga.

    ``completed`` is ``False`` when the payment is approved but a later step
    failed; ``failed_step`` and ``error`` then describe what needs a retry.
    """

    payment: Payment
    expires_at: Optional[datetime] = None
    completed: bool = True
    failed_step: Optional[ApprovalStep] = None
    error: Optional[str] = None


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise AdminRequired()


def pro_package_name() -> str:
    for name, package_type in config.PACKAGE_CATALOG.items():
        if package_type == PackageType.PRO.value:
            return name
    raise RuntimeError("PACKAGE_CATALOG has no pro package")


def parse_duration_months(value) -> int:
    """Return ``value`` as a whole number of months in ``1..MAX_DURATION_MONTHS``."""
    if isinstance(value, bool):
        raise InvalidRequest("duration_months must be an integer")
    try:
        months = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidRequest("duration_months must be an integer")
    if not months.is_finite() or months != months.to_integral_value():
        raise InvalidRequest("duration_months must be an integer")
    months = int(months)
    if months < 1:
        raise InvalidRequest("duration_months must be at least 1")
    if months > config.MAX_DURATION_MONTHS:
        raise InvalidRequest(f"duration_months must be at most {config.MAX_DURATION_MONTHS}")
    return months


def parse_status(value) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        raise InvalidRequest(f"Unknown payment status '{value}'")


async def get_payment(db: AsyncSession, payment_id: int) -> Payment:
    result = await db.execute(
        select(Payment).filter_by(id=payment_id).execution_options(populate_existing=True)
    )
    payment = result.scalars().first()
    if payment is None:
        raise PaymentNotFound(payment_id)
    return payment


async def get_open_payment(db: AsyncSession, user_id: int, exclude_id: int = None) -> Optional[Payment]:
    query = select(Payment).where(Payment.user_id == user_id, Payment.status.in_(OPEN_STATUSES))
    if exclude_id is not None:
        query = query.where(Payment.id != exclude_id)
    result = await db.execute(query)
    return result.scalars().first()


async def _reload_if_expired(db: AsyncSession, payment: Payment) -> None:
    # A swallowed notification failure rolls the session back
    if inspect(payment).expired:
        await db.refresh(payment)


async def _transition(db: AsyncSession, payment: Payment, target: PaymentStatus, action: str, **values) -> Payment:
    """Compare-and-set ``payment`` into ``target`` or raise InvalidStateTransition."""
    # Rollback expires the instance, so its id is read up front
    payment_id = payment.id
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status.in_(allowed_sources(target)))
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        current = await get_payment(db, payment_id)
        raise InvalidStateTransition(action, current.status)
    await db.commit()
    await db.refresh(payment)
    return payment


# --- user operations -------------------------------------------------------


async def create_payment(
    db: AsyncSession,
    actor: Actor,
    package_name: str,
    package_type: str,
    amount,
    duration_months: int = 1,
) -> Payment:
    """Open a manual bank-transfer payment request for ``actor``."""
    if not package_name or not package_type or amount is None:
        raise InvalidRequest("Missing required fields: package_name, package_type, amount")
    if package_type != PackageType.PRO.value:
        raise InvalidRequest('Invalid package type. Only "pro" is supported.')
    if config.PACKAGE_CATALOG.get(package_name) != package_type:
        raise InvalidRequest(f"Unknown package '{package_name}'")
    try:
        amount = Decimal(str(amount))
    except InvalidOperation:
        raise InvalidRequest("Amount must be a number")
    if not amount.is_finite():
        raise InvalidRequest("Amount must be a number")
    if amount <= 0:
        raise InvalidRequest("Amount must be positive")
    duration_months = parse_duration_months(1 if duration_months is None else duration_months)

    await entitlement_service.get_user(db, actor.user_id)

    existing = await get_open_payment(db, actor.user_id)
    if existing:
        raise DuplicatePendingPayment(existing.id)

    payment = Payment(
        user_id=actor.user_id,
        package_name=package_name,
        package_type=PackageType(package_type).value,
        amount=amount,
        duration_months=duration_months,
        payment_method=PaymentMethod.BANK_TRANSFER,
        status=PaymentStatus.PENDING_PAYMENT,
        bank_name=config.BANK_NAME,
        bank_account_number=config.BANK_ACCOUNT_NUMBER,
        bank_account_name=config.BANK_ACCOUNT_NAME,
    )
    db.add(payment)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request opened one between the check and the insert
        await db.rollback()
        existing = await get_open_payment(db, actor.user_id)
        raise DuplicatePendingPayment(existing.id if existing else None)

    logger.info(
        "Payment %s created: user=%s package=%s amount=%s months=%s",
        payment.id,
        actor.user_id,
        package_name,
        amount,
        duration_months,
    )
    return payment


async def upload_proof(db: AsyncSession, actor: Actor, payment_id: int, proof_ref: str) -> Payment:
    """Attach a proof-of-transfer reference and queue the payment for review.

    Allowed from ``pending_payment`` and, as a resubmission, from ``rejected``;
    a resubmission clears the previous rejection reason.
    """
    proof_ref = (proof_ref or "").strip()
    if not proof_ref:
        raise InvalidRequest("Payment proof reference is required")

    payment = await get_payment(db, payment_id)
    if payment.user_id != actor.user_id:
        raise NotPaymentOwner("Unauthorized to upload proof for this payment")
    if payment.payment_method != PaymentMethod.BANK_TRANSFER:
        raise InvalidRequest("Only bank transfer payments accept a payment proof")

    if payment.status == PaymentStatus.REJECTED:
        other = await get_open_payment(db, actor.user_id, exclude_id=payment.id)
        if other:
            raise DuplicatePendingPayment(other.id)

    try:
        payment = await _transition(
            db,
            payment,
            PaymentStatus.PENDING_VERIFICATION,
            "upload proof for",
            payment_proof_url=proof_ref,
            payment_proof_uploaded_at=utcnow(),
            rejection_reason=None,
        )
    except IntegrityError:
        await db.rollback()
        other = await get_open_payment(db, actor.user_id, exclude_id=payment_id)
        raise DuplicatePendingPayment(other.id if other else None)

    logger.info("Payment %s proof uploaded by user %s", payment.id, actor.user_id)

    try:
        uploader = await entitlement_service.get_user(db, actor.user_id)
        await notification_service.notify_admins_proof_uploaded(db, payment, uploader)
    except Exception:
        logger.exception("Admin notification for payment %s failed", payment_id)
    await _reload_if_expired(db, payment)
    return payment


async def cancel_payment(db: AsyncSession, actor: Actor, payment_id: int) -> Payment:
    """Delete the owner's payment while it is still awaiting a transfer.

    Payments under a retired package type may be cancelled in any status.
    Returns the deleted record.
    """
    payment = await get_payment(db, payment_id)
    if payment.user_id != actor.user_id:
        raise NotPaymentOwner()

    result = await db.execute(
        delete(Payment)
        .where(
            Payment.id == payment_id,
            Payment.user_id == actor.user_id,
            or_(
                Payment.status == PaymentStatus.PENDING_PAYMENT,
                Payment.package_type.in_(tuple(config.LEGACY_PACKAGE_TYPES)),
            ),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        current = await get_payment(db, payment_id)
        raise InvalidStateTransition("cancel", current.status)
    await db.commit()
    db.expunge(payment)

    logger.info("Payment %s cancelled by user %s", payment_id, actor.user_id)
    return payment


async def list_user_payments(db: AsyncSession, actor: Actor) -> List[Payment]:
    result = await db.execute(
        select(Payment)
        .filter_by(user_id=actor.user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    return result.scalars().all()


# --- admin operations ------------------------------------------------------


async def approve_payment(db: AsyncSession, actor: Actor, payment_id: int, notes: str = None) -> ApprovalOutcome:
    _require_admin(actor)
    payment = await get_payment(db, payment_id)

    values = {
        "approved_by": actor.user_id,
        "approved_at": utcnow(),
        "approval_step": ApprovalStep.MARKED_APPROVED,
    }
    notes = (notes or "").strip()
    if notes:
        values["admin_notes"] = notes

    payment = await _transition(db, payment, PaymentStatus.APPROVED, "approve", **values)
    logger.info("Payment %s approved by admin %s", payment.id, actor.user_id)
    return await run_approval_saga(db, payment)


async def reject_payment(
    db: AsyncSession, actor: Actor, payment_id: int, reason: str, notes: str = None
) -> Payment:
    _require_admin(actor)
    reason = (reason or "").strip()
    if not reason:
        raise MissingReason()
    payment = await get_payment(db, payment_id)

    values = {
        "rejection_reason": reason,
        "rejected_by": actor.user_id,
        "rejected_at": utcnow(),
    }
    notes = (notes or "").strip()
    if notes:
        values["admin_notes"] = notes

    payment = await _transition(db, payment, PaymentStatus.REJECTED, "reject", **values)
    logger.info("Payment %s rejected by admin %s: %s", payment.id, actor.user_id, reason)
    return payment


async def resume_approval(db: AsyncSession, actor: Actor, payment_id: int) -> ApprovalOutcome:
    """Re-run the approval steps that did not complete for an approved payment."""
    _require_admin(actor)
    payment = await get_payment(db, payment_id)
    if payment.status != PaymentStatus.APPROVED:
        raise InvalidStateTransition("resume approval of", payment.status)
    if payment.approval_step is None:
        # Gateway invoice audit rows are approved without an approval saga
        raise InvalidRequest(f"Payment {payment.id} has no approval to resume")
    return await run_approval_saga(db, payment)


async def list_payments(
    db: AsyncSession, actor: Actor, status: str = None, page: int = 1, limit: int = 20
) -> Tuple[List[Payment], int]:
    _require_admin(actor)
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 100)

    query = select(Payment).options(joinedload(Payment.user))
    count_query = select(func.count(Payment.id))
    if status:
        status = parse_status(status)
        query = query.where(Payment.status == status)
        count_query = count_query.where(Payment.status == status)

    result = await db.execute(
        query.order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    total = (await db.execute(count_query)).scalar_one()
    return result.scalars().all(), total


async def list_incomplete_approvals(db: AsyncSession) -> List[Payment]:
    result = await db.execute(
        select(Payment)
        .where(
            Payment.status == PaymentStatus.APPROVED,
            Payment.approval_step.is_not(None),
            Payment.approval_step != ApprovalStep.QUOTA_PRIMED,
        )
        .order_by(Payment.approved_at)
    )
    return result.scalars().all()


async def cleanup_legacy_payments(db: AsyncSession, actor: Actor) -> dict:
    """Drop open payments under retired package types and migrate approved ones to pro."""
    _require_admin(actor)
    legacy = tuple(config.LEGACY_PACKAGE_TYPES)

    total = (
        await db.execute(select(func.count(Payment.id)).where(Payment.package_type.in_(legacy)))
    ).scalar_one()
    deleted = await db.execute(
        delete(Payment)
        .where(Payment.package_type.in_(legacy), Payment.status.in_(OPEN_STATUSES))
        .execution_options(synchronize_session=False)
    )
    updated = await db.execute(
        update(Payment)
        .where(Payment.package_type.in_(legacy), Payment.status == PaymentStatus.APPROVED)
        .values(package_type=PackageType.PRO.value, package_name=pro_package_name())
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info(
        "Legacy cleanup: found=%s deleted=%s updated=%s", total, deleted.rowcount, updated.rowcount
    )
    return {"total": total, "deleted": deleted.rowcount, "updated": updated.rowcount}


# --- approval saga ---------------------------------------------------------


async def _grant_entitlement(db: AsyncSession, payment: Payment):
    # Anchored at approved_at so a retry computes the same expiry
    return await entitlement_service.grant(
        db,
        payment.user_id,
        payment.duration_months,
        start=payment.approved_at,
        customer_ref=payment.gateway_customer_id,
        subscription_ref=payment.gateway_subscription_id,
    )


async def _prime_quota(db: AsyncSession, payment: Payment):
    return await quota_service.get_or_create_today(db, payment.user_id, PackageType.PRO)


SAGA_STEPS = (
    (ApprovalStep.ENTITLEMENT_GRANTED, _grant_entitlement),
    (ApprovalStep.QUOTA_PRIMED, _prime_quota),
)


async def _record_step(db: AsyncSession, payment: Payment, step: ApprovalStep) -> None:
    await db.execute(
        update(Payment)
        .where(Payment.id == payment.id)
        .values(approval_step=step)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(payment)


def _describe(exc: Exception) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"timed out after {config.STEP_TIMEOUT_SECONDS}s (transient, safe to retry)"
    return f"{exc.__class__.__name__}: {exc}"


async def run_approval_saga(db: AsyncSession, payment: Payment) -> ApprovalOutcome:
    """Run every approval step after ``payment.approval_step``.

    A failing step is not rolled back into the payment: the payment stays
    approved, the failure is logged as critical and an operator alert is sent.
    """
    # A failed step rolls back and expires the instance
    payment_id, user_id = payment.id, payment.user_id
    ran_any = False
    for step, action in SAGA_STEPS:
        if payment.approval_step is not None and payment.approval_step.position >= step.position:
            continue
        try:
            await asyncio.wait_for(action(db, payment), timeout=config.STEP_TIMEOUT_SECONDS)
            await _record_step(db, payment, step)
        except Exception as exc:
            try:
                await db.rollback()
                await db.refresh(payment)
            except Exception:
                logger.exception("Could not reset session after failed step for payment %s", payment_id)
            error = _describe(exc)
            logger.critical(
                "Payment %s is approved but step '%s' failed for user %s: %s. Manual reconciliation required.",
                payment_id,
                step.value,
                user_id,
                error,
                exc_info=True,
            )
            await notification_service.alert_partial_approval(payment_id, step.value, error)
            return ApprovalOutcome(payment=payment, completed=False, failed_step=step, error=error)
        ran_any = True

    user = await entitlement_service.get_user(db, user_id)
    outcome = ApprovalOutcome(payment=payment, expires_at=user.premium_expires_at)
    if ran_any:
        logger.info("Payment %s fully applied; user %s premium until %s", payment_id, user_id, outcome.expires_at)
        try:
            await notification_service.notify_payment_approved(db, payment, user, outcome.expires_at)
        except Exception:
            logger.exception("Approval notification for payment %s failed", payment_id)
        await _reload_if_expired(db, payment)
    return outcome

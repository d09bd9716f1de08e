"""Apply verified payment-gateway webhook events.

Events arrive at least once and already authenticated. Each handler is safe
to run again for the same event: processed event ids are stored in
``gateway_events``, checkout sessions and invoices are unique on their
gateway ids, and revocation is naturally repeatable.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_server import config
from billing_server.models.enums import ApprovalStep, PackageType, PaymentMethod, PaymentStatus
from billing_server.models.gateway_event import GatewayEvent
from billing_server.models.payment import Payment
from billing_server.services import entitlement_service, payment_service
from billing_server.services.errors import InvalidRequest, UserNotFound
from billing_server.utils import utcnow

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"
# Payment recorded as approved but part of the approval saga failed
DEGRADED = "degraded"


@dataclass
class EventResult:
    status: str
    detail: Optional[str] = None
    payment_id: Optional[int] = None


def _ref(value) -> Optional[str]:
    """Gateway references may arrive as plain ids or as expanded objects."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _from_minor_units(value) -> Decimal:
    return (Decimal(int(value or 0)) / 100).quantize(Decimal("0.01"))


def _parse_user_id(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _checkout_duration(session: dict, metadata: dict) -> Optional[int]:
    if _ref(session.get("subscription")):
        # Access lasts until customer.subscription.deleted arrives
        return None
    if metadata.get("duration_months") is not None:
        try:
            return payment_service.parse_duration_months(metadata["duration_months"])
        except InvalidRequest as exc:
            logger.warning(
                "Checkout session %s has invalid duration_months %r (%s); using its plan",
                session.get("id"),
                metadata["duration_months"],
                exc.message,
            )
    plan = metadata.get("plan")
    if plan in config.CHECKOUT_PLAN_MONTHS:
        return config.CHECKOUT_PLAN_MONTHS[plan]
    logger.warning("Checkout session %s has no plan; granting one month", session.get("id"))
    return config.CHECKOUT_PLAN_MONTHS["monthly"]


async def _find_payment(db: AsyncSession, **criteria) -> Optional[Payment]:
    result = await db.execute(
        select(Payment).filter_by(**criteria).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _replay_checkout(db: AsyncSession, payment: Payment) -> EventResult:
    if payment.approval_step == ApprovalStep.QUOTA_PRIMED:
        logger.info("Checkout session %s already applied (payment %s)", payment.gateway_session_id, payment.id)
        return EventResult(DUPLICATE, payment_id=payment.id)

    logger.info("Resuming approval for checkout session %s (payment %s)", payment.gateway_session_id, payment.id)
    outcome = await payment_service.run_approval_saga(db, payment)
    if not outcome.completed:
        return EventResult(DEGRADED, detail=outcome.error, payment_id=payment.id)
    return EventResult(PROCESSED, detail="resumed", payment_id=payment.id)


async def handle_checkout_completed(db: AsyncSession, session: dict) -> EventResult:
    session_id = session.get("id")
    if not session_id:
        raise InvalidRequest("Checkout session id is missing")

    existing = await _find_payment(db, gateway_session_id=session_id)
    if existing:
        return await _replay_checkout(db, existing)

    # Identity comes only from the id we attached when creating the session
    metadata = session.get("metadata") or {}
    user_id = _parse_user_id(metadata.get("user_id") or session.get("client_reference_id"))
    if user_id is None:
        logger.error("Checkout session %s carries no user id", session_id)
        return EventResult(IGNORED, detail="no user correlation")
    try:
        await entitlement_service.get_user(db, user_id)
    except UserNotFound:
        logger.error("Checkout session %s references unknown user %s", session_id, user_id)
        return EventResult(IGNORED, detail="unknown user")

    payment = Payment(
        user_id=user_id,
        package_name=payment_service.pro_package_name(),
        package_type=PackageType.PRO.value,
        amount=_from_minor_units(session.get("amount_total")),
        currency=session.get("currency"),
        duration_months=_checkout_duration(session, metadata),
        payment_method=PaymentMethod.GATEWAY,
        status=PaymentStatus.APPROVED,
        gateway_session_id=session_id,
        gateway_payment_intent_id=_ref(session.get("payment_intent")),
        gateway_customer_id=_ref(session.get("customer")),
        gateway_subscription_id=_ref(session.get("subscription")),
        approved_at=utcnow(),
        approval_step=ApprovalStep.MARKED_APPROVED,
    )
    db.add(payment)
    try:
        await db.commit()
    except IntegrityError:
        # A parallel delivery of the same session inserted first
        await db.rollback()
        existing = await _find_payment(db, gateway_session_id=session_id)
        if existing is None:
            raise
        return await _replay_checkout(db, existing)

    logger.info("Checkout session %s recorded as payment %s for user %s", session_id, payment.id, user_id)
    outcome = await payment_service.run_approval_saga(db, payment)
    if not outcome.completed:
        return EventResult(DEGRADED, detail=outcome.error, payment_id=payment.id)
    return EventResult(PROCESSED, payment_id=payment.id)


async def handle_subscription_deleted(db: AsyncSession, subscription: dict) -> EventResult:
    subscription_id = subscription.get("id")
    if not subscription_id:
        raise InvalidRequest("Subscription id is missing")

    user = await entitlement_service.find_user_by_subscription(db, subscription_id)
    if user is None:
        logger.info("Subscription %s does not belong to any user; ignoring", subscription_id)
        return EventResult(IGNORED, detail="no user correlation")

    await entitlement_service.revoke(db, user.id)
    logger.info("User %s downgraded after subscription %s ended", user.id, subscription_id)
    return EventResult(PROCESSED)


async def _record_invoice(
    db: AsyncSession, invoice: dict, status: PaymentStatus, amount_field: str, reason: str = None
) -> EventResult:
    invoice_id = invoice.get("id")
    if not invoice_id:
        raise InvalidRequest("Invoice id is missing")

    existing = await _find_payment(db, gateway_invoice_id=invoice_id)
    if existing:
        return EventResult(DUPLICATE, payment_id=existing.id)

    customer_id = _ref(invoice.get("customer"))
    user = await entitlement_service.find_user_by_customer(db, customer_id) if customer_id else None
    if user is None:
        logger.warning("Invoice %s has no known customer (%s); not recorded", invoice_id, customer_id)
        return EventResult(IGNORED, detail="no user correlation")

    now = utcnow()
    payment = Payment(
        user_id=user.id,
        package_name=payment_service.pro_package_name(),
        package_type=PackageType.PRO.value,
        amount=_from_minor_units(invoice.get(amount_field)),
        currency=invoice.get("currency"),
        payment_method=PaymentMethod.GATEWAY,
        status=status,
        gateway_invoice_id=invoice_id,
        gateway_customer_id=customer_id,
        gateway_subscription_id=_ref(invoice.get("subscription")),
        approved_at=now if status == PaymentStatus.APPROVED else None,
        rejected_at=now if status == PaymentStatus.REJECTED else None,
        rejection_reason=reason,
    )
    db.add(payment)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _find_payment(db, gateway_invoice_id=invoice_id)
        if existing is None:
            raise
        return EventResult(DUPLICATE, payment_id=existing.id)
    return EventResult(PROCESSED, payment_id=payment.id)


async def handle_invoice_payment_succeeded(db: AsyncSession, invoice: dict) -> EventResult:
    logger.info("Invoice payment succeeded: %s", invoice.get("id"))
    return await _record_invoice(db, invoice, PaymentStatus.APPROVED, "amount_paid")


async def handle_invoice_payment_failed(db: AsyncSession, invoice: dict) -> EventResult:
    # Entitlement stays until the gateway ends the subscription after its retries
    logger.error("Invoice payment failed: invoice=%s customer=%s", invoice.get("id"), _ref(invoice.get("customer")))
    return await _record_invoice(db, invoice, PaymentStatus.REJECTED, "amount_due", reason="Payment failed")


HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


async def _already_processed(db: AsyncSession, event_id: str) -> bool:
    result = await db.execute(select(GatewayEvent.id).filter_by(event_id=event_id))
    return result.first() is not None


async def _remember(db: AsyncSession, event_id: str, event_type: str, outcome: str) -> None:
    db.add(GatewayEvent(event_id=event_id, event_type=event_type, outcome=outcome))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()


async def process_event(db: AsyncSession, event: dict) -> EventResult:
    """Dispatch a verified gateway event ``{"id", "type", "data": {"object"}}``."""
    event_type = event.get("type")
    if not event_type:
        raise InvalidRequest("Event type is missing")
    event_id = event.get("id")
    obj = (event.get("data") or {}).get("object") or {}

    if event_id and await _already_processed(db, event_id):
        logger.info("Gateway event %s (%s) already processed", event_id, event_type)
        return EventResult(DUPLICATE)

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled gateway event type: %s", event_type)
        result = EventResult(IGNORED, detail=f"unhandled event type {event_type}")
    else:
        result = await handler(db, obj)

    # A degraded event stays unrecorded so a redelivery resumes the approval
    if event_id and result.status != DEGRADED:
        await _remember(db, event_id, event_type, result.status)
    return result

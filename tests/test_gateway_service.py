import asyncio
from decimal import Decimal

from sqlalchemy import select

from conftest import add_user, setup_test_db

from billing_server.models.enums import ApprovalStep, PaymentMethod, PaymentStatus
from billing_server.models.gateway_event import GatewayEvent
from billing_server.models.payment import Payment
from billing_server.services import entitlement_service, gateway_service


def checkout_event(event_id, user_id, session_id="cs_test_1", **session):
    obj = {
        "id": session_id,
        "client_reference_id": str(user_id),
        "amount_total": 4900000,
        "currency": "idr",
        "customer": "cus_1",
        "payment_intent": "pi_1",
        "metadata": {"user_id": str(user_id), "plan": "yearly"},
    }
    obj.update(session)
    return {"id": event_id, "type": "checkout.session.completed", "data": {"object": obj}}


async def all_payments(SessionLocal):
    async with SessionLocal() as db:
        return (await db.execute(select(Payment))).scalars().all()


def test_checkout_completed_creates_one_approved_payment():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="buyer@example.com")

        async with SessionLocal() as db:
            result = await gateway_service.process_event(db, checkout_event("evt_1", user_id))
            assert result.status == gateway_service.PROCESSED
            user = await entitlement_service.get_user(db, user_id)
            assert entitlement_service.is_entitlement_active(user)
            assert user.gateway_customer_ref == "cus_1"

        payments = await all_payments(SessionLocal)
        assert len(payments) == 1
        payment = payments[0]
        assert payment.status == PaymentStatus.APPROVED
        assert payment.payment_method == PaymentMethod.GATEWAY
        assert payment.amount == Decimal("49000.00")
        assert payment.duration_months == 12
        assert payment.approval_step == ApprovalStep.QUOTA_PRIMED
        await engine.dispose()

    asyncio.run(scenario())


def test_redelivered_checkout_is_applied_once():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="buyer@example.com")

        async with SessionLocal() as db:
            await gateway_service.process_event(db, checkout_event("evt_1", user_id))
            user = await entitlement_service.get_user(db, user_id)
            first_expiry = user.premium_expires_at

            same_event = await gateway_service.process_event(db, checkout_event("evt_1", user_id))
            # Same session delivered under a new event id
            same_session = await gateway_service.process_event(db, checkout_event("evt_2", user_id))

            user = await entitlement_service.get_user(db, user_id)

        assert same_event.status == gateway_service.DUPLICATE
        assert same_session.status == gateway_service.DUPLICATE
        assert user.premium_expires_at == first_expiry
        assert len(await all_payments(SessionLocal)) == 1
        await engine.dispose()

    asyncio.run(scenario())


def test_subscription_checkout_is_open_ended_until_deleted():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="sub@example.com")

        async with SessionLocal() as db:
            await gateway_service.process_event(
                db, checkout_event("evt_1", user_id, subscription="sub_9", metadata={"user_id": str(user_id)})
            )
            user = await entitlement_service.get_user(db, user_id)
            assert user.premium_expires_at is None
            assert user.gateway_subscription_ref == "sub_9"
            assert await entitlement_service.is_active(db, user_id)

            deleted = {"id": "evt_2", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_9"}}}
            result = await gateway_service.process_event(db, deleted)
            assert result.status == gateway_service.PROCESSED
            assert not await entitlement_service.is_active(db, user_id)

            unknown = {"id": "evt_3", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_x"}}}
            result = await gateway_service.process_event(db, unknown)
            assert result.status == gateway_service.IGNORED

        await engine.dispose()

    asyncio.run(scenario())


def test_failed_invoice_is_recorded_without_revoking():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="sub@example.com")

        async with SessionLocal() as db:
            await gateway_service.process_event(db, checkout_event("evt_1", user_id, subscription="sub_9"))
            invoice = {"id": "in_1", "customer": "cus_1", "subscription": "sub_9", "amount_due": 4900000}
            failed = {"id": "evt_2", "type": "invoice.payment_failed", "data": {"object": invoice}}

            result = await gateway_service.process_event(db, failed)
            assert result.status == gateway_service.PROCESSED
            assert await entitlement_service.is_active(db, user_id)

            retry = dict(failed, id="evt_3")
            assert (await gateway_service.process_event(db, retry)).status == gateway_service.DUPLICATE

        rows = [p for p in await all_payments(SessionLocal) if p.gateway_invoice_id == "in_1"]
        assert len(rows) == 1
        assert rows[0].status == PaymentStatus.REJECTED
        assert rows[0].rejection_reason == "Payment failed"
        assert rows[0].approval_step is None
        await engine.dispose()

    asyncio.run(scenario())


def test_uncorrelated_events_are_ignored():
    async def scenario():
        engine, SessionLocal = await setup_test_db()

        async with SessionLocal() as db:
            no_user = checkout_event("evt_1", "", metadata={}, client_reference_id=None)
            assert (await gateway_service.process_event(db, no_user)).status == gateway_service.IGNORED

            ghost = checkout_event("evt_2", 999, session_id="cs_ghost")
            assert (await gateway_service.process_event(db, ghost)).status == gateway_service.IGNORED

            invoice = {"id": "evt_3", "type": "invoice.payment_succeeded", "data": {"object": {"id": "in_2"}}}
            assert (await gateway_service.process_event(db, invoice)).status == gateway_service.IGNORED

            refund = {"id": "evt_4", "type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}
            result = await gateway_service.process_event(db, refund)
            assert result.status == gateway_service.IGNORED

            recorded = (await db.execute(select(GatewayEvent.event_id))).scalars().all()

        assert sorted(recorded) == ["evt_1", "evt_2", "evt_3", "evt_4"]
        assert await all_payments(SessionLocal) == []
        await engine.dispose()

    asyncio.run(scenario())


def test_degraded_checkout_is_resumed_on_redelivery(monkeypatch):
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="buyer@example.com")
        real_grant = entitlement_service.grant

        async def broken_grant(*args, **kwargs):
            raise RuntimeError("connection reset")

        async with SessionLocal() as db:
            monkeypatch.setattr(entitlement_service, "grant", broken_grant)
            result = await gateway_service.process_event(db, checkout_event("evt_1", user_id))
            assert result.status == gateway_service.DEGRADED
            assert not await entitlement_service.is_active(db, user_id)

            monkeypatch.setattr(entitlement_service, "grant", real_grant)
            result = await gateway_service.process_event(db, checkout_event("evt_1", user_id))
            assert result.status == gateway_service.PROCESSED
            assert result.detail == "resumed"
            assert await entitlement_service.is_active(db, user_id)

        assert len(await all_payments(SessionLocal)) == 1
        await engine.dispose()

    asyncio.run(scenario())


def test_unusable_checkout_duration_falls_back_to_plan():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="buyer@example.com")
        events = [
            checkout_event("evt_1", user_id, "cs_abc", metadata={"user_id": str(user_id), "plan": "yearly", "duration_months": "abc"}),
            checkout_event("evt_2", user_id, "cs_zero", metadata={"user_id": str(user_id), "plan": "yearly", "duration_months": "0"}),
            checkout_event("evt_3", user_id, "cs_huge", metadata={"user_id": str(user_id), "duration_months": "9999"}),
            checkout_event("evt_4", user_id, "cs_six", metadata={"user_id": str(user_id), "plan": "yearly", "duration_months": "6"}),
        ]

        async with SessionLocal() as db:
            for event in events:
                result = await gateway_service.process_event(db, event)
                assert result.status == gateway_service.PROCESSED

        durations = {p.gateway_session_id: p.duration_months for p in await all_payments(SessionLocal)}
        assert durations == {"cs_abc": 12, "cs_zero": 12, "cs_huge": 1, "cs_six": 6}
        await engine.dispose()

    asyncio.run(scenario())

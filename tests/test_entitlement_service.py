import asyncio
import datetime

import pytest

from conftest import add_user, setup_test_db

from billing_server.models.enums import PackageType
from billing_server.models.user import User
from billing_server.services import entitlement_service
from billing_server.services.errors import UserNotFound
from billing_server.utils import add_months


def test_add_months_clamps_to_month_end():
    assert add_months(datetime.datetime(2026, 1, 31, 10, 30), 1) == datetime.datetime(2026, 2, 28, 10, 30)
    assert add_months(datetime.datetime(2028, 1, 31), 1) == datetime.datetime(2028, 2, 29)
    assert add_months(datetime.datetime(2026, 11, 15), 3) == datetime.datetime(2027, 2, 15)
    assert add_months(datetime.datetime(2026, 5, 31), 12) == datetime.datetime(2027, 5, 31)


def test_expiry_is_checked_on_read():
    now = datetime.datetime(2026, 6, 1, 12, 0)
    user = User(is_premium=True, premium_expires_at=now + datetime.timedelta(seconds=1))
    assert entitlement_service.is_entitlement_active(user, now)

    user.premium_expires_at = now
    assert not entitlement_service.is_entitlement_active(user, now)

    user.premium_expires_at = None
    assert entitlement_service.is_entitlement_active(user, now)

    user.is_premium = False
    assert not entitlement_service.is_entitlement_active(user, now)


def test_grant_is_repeatable_with_same_start():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="pro@example.com")
        start = datetime.datetime(2026, 1, 31, 8, 0)

        async with SessionLocal() as db:
            first = await entitlement_service.grant(db, user_id, 1, start=start)
            second = await entitlement_service.grant(db, user_id, 1, start=start)
            user = await entitlement_service.get_user(db, user_id)

        assert first == second == datetime.datetime(2026, 2, 28, 8, 0)
        assert user.is_premium
        assert user.premium_expires_at == first
        await engine.dispose()

    asyncio.run(scenario())


def test_expired_grant_reads_as_free_tier():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="lapsed@example.com")
        start = datetime.datetime(2026, 1, 1)

        async with SessionLocal() as db:
            await entitlement_service.grant(db, user_id, 1, start=start)
            during = await entitlement_service.current_tier(db, user_id, now=datetime.datetime(2026, 1, 15))
            after = await entitlement_service.current_tier(db, user_id, now=datetime.datetime(2026, 2, 2))
            user = await entitlement_service.get_user(db, user_id)

        assert during == PackageType.PRO
        assert after == PackageType.FREE
        # Nothing cleared the stored flag
        assert user.is_premium
        await engine.dispose()

    asyncio.run(scenario())


def test_open_ended_grant_keeps_gateway_refs_and_revoke_keeps_expiry():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="sub@example.com")

        async with SessionLocal() as db:
            expires = await entitlement_service.grant(
                db, user_id, None, customer_ref="cus_1", subscription_ref="sub_1"
            )
            assert expires is None
            assert await entitlement_service.is_active(db, user_id)
            found = await entitlement_service.find_user_by_subscription(db, "sub_1")
            assert found.id == user_id
            found = await entitlement_service.find_user_by_customer(db, "cus_1")
            assert found.id == user_id

            await entitlement_service.grant(db, user_id, 2, start=datetime.datetime(2026, 4, 10))
            await entitlement_service.revoke(db, user_id)
            user = await entitlement_service.get_user(db, user_id)
            assert not user.is_premium
            assert user.premium_expires_at == datetime.datetime(2026, 6, 10)
            assert not await entitlement_service.is_active(db, user_id)

        await engine.dispose()

    asyncio.run(scenario())


def test_unknown_user_is_reported():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        async with SessionLocal() as db:
            with pytest.raises(UserNotFound):
                await entitlement_service.grant(db, 404, 1)
            with pytest.raises(UserNotFound):
                await entitlement_service.revoke(db, 404)
            with pytest.raises(UserNotFound):
                await entitlement_service.is_active(db, 404)
        await engine.dispose()

    asyncio.run(scenario())

import asyncio
import datetime

import pytest

from conftest import add_user, setup_test_db

from billing_server.models.enums import PackageType, QuotaAction
from billing_server.services import quota_service
from billing_server.services.errors import QuotaExceeded


def test_free_tier_allows_three_uploads_then_refuses():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="free@example.com")

        async with SessionLocal() as db:
            record = await quota_service.get_or_create_today(db, user_id)
            assert record.frame_upload_count == 0
            assert record.frame_upload_limit == 3

            for _ in range(3):
                await quota_service.increment(db, record)
            assert record.frame_upload_count == 3

            with pytest.raises(QuotaExceeded) as excinfo:
                await quota_service.increment(db, record)

            assert excinfo.value.tier == "free"
            assert excinfo.value.limit == 3
            assert excinfo.value.upgrade_url == "/upgrade-pro"
            assert excinfo.value.to_dict()["package_type"] == "free"
            assert record.frame_upload_count == 3

        await engine.dispose()

    asyncio.run(scenario())


def test_ai_generation_is_closed_on_free_tier():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="free@example.com")

        async with SessionLocal() as db:
            record = await quota_service.get_or_create_today(db, user_id)
            with pytest.raises(QuotaExceeded) as excinfo:
                await quota_service.increment(db, record, QuotaAction.AI_GENERATION)
            assert excinfo.value.action == "ai_generation"
            assert record.ai_generation_count == 0

        await engine.dispose()

    asyncio.run(scenario())


def test_record_is_per_day():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="daily@example.com")
        monday = datetime.datetime(2026, 3, 2, 23, 59)
        tuesday = datetime.datetime(2026, 3, 3, 0, 1)

        async with SessionLocal() as db:
            first = await quota_service.get_or_create_today(db, user_id, now=monday)
            await quota_service.increment(db, first)
            again = await quota_service.get_or_create_today(db, user_id, now=monday)
            second = await quota_service.get_or_create_today(db, user_id, now=tuesday)

        assert again.id == first.id
        assert again.frame_upload_count == 1
        assert second.id != first.id
        assert second.date == "2026-03-03"
        assert second.frame_upload_count == 0
        await engine.dispose()

    asyncio.run(scenario())


def test_tier_change_rederives_limits_and_keeps_counts():
    async def scenario():
        engine, SessionLocal = await setup_test_db()
        user_id = await add_user(SessionLocal, email="upgrade@example.com")

        async with SessionLocal() as db:
            record = await quota_service.get_or_create_today(db, user_id, PackageType.FREE)
            for _ in range(3):
                await quota_service.increment(db, record)

            record = await quota_service.get_or_create_today(db, user_id, PackageType.PRO)
            assert record.package_type == "pro"
            assert record.frame_upload_limit == 999999
            assert record.frame_upload_count == 3

            await quota_service.increment(db, record)
            assert record.frame_upload_count == 4

        await engine.dispose()

    asyncio.run(scenario())


def test_concurrent_increments_never_pass_the_cap(tmp_path):
    async def scenario():
        engine, SessionLocal = await setup_test_db(f"sqlite+aiosqlite:///{tmp_path / 'quota.db'}")
        user_id = await add_user(SessionLocal, email="race@example.com")

        async with SessionLocal() as db:
            await quota_service.get_or_create_today(db, user_id)

        async def attempt():
            async with SessionLocal() as db:
                record = await quota_service.get_or_create_today(db, user_id)
                try:
                    await quota_service.increment(db, record)
                    return True
                except QuotaExceeded:
                    return False

        results = await asyncio.gather(*(attempt() for _ in range(6)))

        async with SessionLocal() as db:
            record = await quota_service.get_or_create_today(db, user_id)
            final_count = record.frame_upload_count

        await engine.dispose()
        return results, final_count

    results, final_count = asyncio.run(scenario())
    assert results.count(True) == 3
    assert results.count(False) == 3
    assert final_count == 3

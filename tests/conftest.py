import sys
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

sys.path.append(str(Path(__file__).resolve().parents[1]))

from billing_server import config
from billing_server.db.base import Base
from billing_server.models.user import User
from telegram_bot import notify


async def setup_test_db(url="sqlite+aiosqlite:///:memory:"):
    engine = create_async_engine(url, connect_args={"check_same_thread": False})
    TestingSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, TestingSessionLocal


async def add_user(SessionLocal, **fields):
    async with SessionLocal() as db:
        user = User(**fields)
        db.add(user)
        await db.commit()
        return user.id


@pytest.fixture(autouse=True)
def telegram_outbox(monkeypatch):
    """Collect Telegram pushes instead of sending them."""
    sent = []

    async def fake_send(chat_id, text):
        sent.append((chat_id, text))
        return True

    monkeypatch.setattr(notify, "send_telegram_message", fake_send)
    monkeypatch.setattr(config, "ADMIN_CHAT_ID", 1000)
    monkeypatch.setattr(config, "GATEWAY_WEBHOOK_TOKEN", "forwarder-secret")
    return sent

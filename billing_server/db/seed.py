"""Populate the database with a demo admin, a user and an open payment."""

import asyncio

from sqlalchemy import delete

from billing_server import config
from billing_server.db.base import Base
from billing_server.db.session import build_engine, build_sessionmaker
from billing_server.models.payment import Payment
from billing_server.models.usage_limit import UsageLimit
from billing_server.models.user import User
from billing_server.services import payment_service
from billing_server.services.actor import Actor


async def main() -> None:
    print(f"🗂 Using database: {config.DATABASE_URL}")
    engine = build_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    SessionLocal = build_sessionmaker(engine)

    async with SessionLocal() as session:
        print("🧹 Clearing tables...")
        await session.execute(delete(UsageLimit))
        await session.execute(delete(Payment))
        await session.execute(delete(User))
        await session.commit()

        print("➕ Adding users...")
        admin = User(email="admin@example.com", name="Admin", role="admin")
        user = User(email="user@example.com", name="Demo User")
        session.add_all([admin, user])
        await session.commit()

        print("🧾 Opening a payment request...")
        payment = await payment_service.create_payment(
            session,
            Actor(user_id=user.id),
            package_name=payment_service.pro_package_name(),
            package_type="pro",
            amount=49000,
        )
        print(f"✅ Seeded admin={admin.id} user={user.id} payment={payment.id}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

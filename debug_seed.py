"""Give the first user a premium flag whose expiry has already passed.

Useful to check that the entitlement reads as inactive without any job
having cleared ``is_premium``.
"""

import asyncio
import datetime

from sqlalchemy import select

from billing_server.db.session import build_engine, build_sessionmaker
from billing_server.models.user import User
from billing_server.services import entitlement_service
from billing_server.utils import utcnow


async def main() -> None:
    engine = build_engine()
    SessionLocal = build_sessionmaker(engine)
    async with SessionLocal() as db:
        result = await db.execute(select(User).order_by(User.id))
        user = result.scalars().first()
        if not user:
            user = User(email="expired@example.com", name="Expired Pro")
            db.add(user)
            await db.commit()
            await db.refresh(user)

        start = utcnow() - datetime.timedelta(days=40)
        await entitlement_service.grant(db, user.id, 1, start=start)
        active = await entitlement_service.is_active(db, user.id)

    await engine.dispose()
    print(f"✅ User {user.id} has an expired premium grant (active={active}).")


if __name__ == "__main__":
    asyncio.run(main())

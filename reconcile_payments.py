"""Finish approvals whose later steps failed (entitlement grant, quota priming).

Run periodically or after an operator alert:

    python reconcile_payments.py
"""

import asyncio
import logging

from billing_server import config
from billing_server.db.session import build_engine, build_sessionmaker
from billing_server.services import payment_service
from billing_server.services.actor import SYSTEM

logging.basicConfig(level=config.LOG_LEVEL)


async def main() -> None:
    engine = build_engine()
    SessionLocal = build_sessionmaker(engine)
    try:
        async with SessionLocal() as db:
            payments = await payment_service.list_incomplete_approvals(db)
            if not payments:
                print("Nothing to reconcile.")
                return

            failed = 0
            for payment in payments:
                outcome = await payment_service.resume_approval(db, SYSTEM, payment.id)
                if outcome.completed:
                    print(f"Payment {payment.id}: completed, premium until {outcome.expires_at or 'open-ended'}")
                else:
                    failed += 1
                    print(f"Payment {payment.id}: '{outcome.failed_step.value}' failed again: {outcome.error}")
            print(f"Reconciled {len(payments) - failed} of {len(payments)} payments.")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from billing_server import config
from billing_server.api.deps import get_db
from billing_server.services import gateway_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["gateway"])


def verify_forwarder(x_gateway_token: Optional[str] = Header(None)) -> None:
    """The signature verifier in front of us forwards events with a shared token."""
    expected = config.GATEWAY_WEBHOOK_TOKEN
    if not expected:
        raise HTTPException(status_code=503, detail="Gateway webhook is not configured")
    if not x_gateway_token or not hmac.compare_digest(x_gateway_token, expected):
        raise HTTPException(status_code=401, detail="Invalid gateway token")


@router.post("/payments/webhook", dependencies=[Depends(verify_forwarder)])
async def gateway_webhook(event: Dict[str, Any], db: AsyncSession = Depends(get_db)):
    """Apply a verified gateway event.

    Duplicates and unknown event types are answered with 200 so the gateway
    stops redelivering them.
    """
    logger.info("Gateway event received: id=%s type=%s", event.get("id"), event.get("type"))
    result = await gateway_service.process_event(db, event)
    return {
        "success": True,
        "received": True,
        "status": result.status,
        "detail": result.detail,
        "payment_id": result.payment_id,
    }

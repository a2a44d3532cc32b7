"""
Billing callback - subscription events from the billing system.

No JWT auth: the request body is verified with the shared HMAC secret.
The event is applied inside the request transaction, so a failure rolls back
every referral and trial change it made.
"""
import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from growth.database import get_db
from growth.config import get_settings
from growth.services import billing as billing_service
from growth.utils.webhook_signatures import SIGNATURE_HEADER, validate_hmac_sha256

logger = logging.getLogger(__name__)
router = APIRouter(tags=["billing"])


@router.post("/api/v1/billing/subscription-events")
async def subscription_events(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER, "")

    if not signature:
        raise HTTPException(status_code=400, detail=f"Missing {SIGNATURE_HEADER} header")

    secret = get_settings().billing_webhook_secret
    if not secret:
        logger.error("Billing callback received but BILLING_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=503, detail="Billing callback not configured")

    if not validate_hmac_sha256(secret, signature, payload):
        logger.warning("Billing callback signature verification failed")
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    try:
        event = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid event")

    result = await billing_service.handle_subscription_event(db, event)
    if result["error"]:
        raise HTTPException(status_code=400, detail=result["error"])
    return {"received": True, "event_type": result["event_type"], "handled": result["handled"]}

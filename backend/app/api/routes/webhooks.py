"""Payment gateway webhook receiver."""

import logging

from fastapi import APIRouter, HTTPException, Request

from app.core.config import settings
from app.api.routes.checkout import CheckoutServiceDep
from app.services.payment_gateway_service import verify_event_checksum

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/payments")
async def payment_webhook(request: Request, checkout: CheckoutServiceDep):
    """Handle ``transaction.updated`` events from the gateway.

    The event checksum is verified against the events secret; unknown or
    already final transactions are acknowledged with 200 so the gateway
    stops retrying.
    """
    try:
        event = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid event payload")

    if not verify_event_checksum(event, settings.gateway_events_secret):
        logger.warning(f"Webhook checksum mismatch for event {event.get('event')}")
        raise HTTPException(status_code=401, detail="Invalid event signature")

    outcome = await checkout.handle_webhook(event)
    logger.info(f"Webhook {event.get('event')} processed: {outcome}")
    return {"received": True, **outcome}

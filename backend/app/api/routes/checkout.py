"""Checkout API routes.

``POST /checkout/initiate`` returns once the gateway accepted the
transaction; the final outcome is read from ``/checkout/status/{id}``
(or arrives by webhook and email).
"""

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field

from app.core.config import settings
from app.core.rate_limit import limiter
from app.core.security import CurrentIdentity
from app.services.checkout_service import CheckoutRequest, CheckoutService, get_checkout_service

logger = logging.getLogger(__name__)

router = APIRouter()

CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]


class InitiateCheckoutRequest(BaseModel):
    """Body for POST /checkout/initiate.

    ``payment_data`` carries the method-specific fields: card fields or a
    card ``token`` for CARD, ``phone_number`` for NEQUI, legal id and bank
    code for PSE, ``payment_description`` for BANCOLOMBIA_TRANSFER.
    """

    email: EmailStr
    payment_method: Optional[str] = Field(
        None, description="CARD, NEQUI, PSE or BANCOLOMBIA_TRANSFER; not needed for free carts"
    )
    payment_data: Dict[str, Any] = Field(default_factory=dict)
    installments: int = Field(1, ge=1, le=36)
    redirect_url: Optional[str] = Field(None, max_length=500)


@router.post("/initiate")
@limiter.limit(settings.checkout_rate_limit)
async def initiate_checkout(
    request: Request,
    body: InitiateCheckoutRequest,
    identity: CurrentIdentity,
    checkout: CheckoutServiceDep,
):
    result = await checkout.initiate_checkout(
        identity,
        CheckoutRequest(
            email=body.email,
            payment_method=body.payment_method,
            payment_data=body.payment_data,
            installments=body.installments,
            redirect_url=body.redirect_url,
        ),
    )
    return result.to_dict()


@router.get("/status/{transaction_id}")
def get_checkout_status(transaction_id: str, checkout: CheckoutServiceDep):
    """Persisted state of a checkout attempt (gateway id or reference)."""
    return checkout.get_status(transaction_id)


@router.post("/confirm/{provider_transaction_id}")
@limiter.limit("30/minute")
async def confirm_checkout(request: Request, provider_transaction_id: str, checkout: CheckoutServiceDep):
    """Re-check a transaction with the gateway and fulfill it if approved.

    Idempotent: an already approved transaction returns its purchases.
    """
    return await checkout.confirm_transaction(provider_transaction_id)

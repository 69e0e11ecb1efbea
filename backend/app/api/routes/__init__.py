"""API routes."""

import logging
from fastapi import APIRouter

from app.api.routes import cart, checkout, pricing, webhooks

logger = logging.getLogger(__name__)

api_router = APIRouter()

api_router.include_router(cart.router, prefix="/cart", tags=["cart"])
api_router.include_router(checkout.router, prefix="/checkout", tags=["checkout"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(pricing.router, prefix="/pricing", tags=["pricing"])

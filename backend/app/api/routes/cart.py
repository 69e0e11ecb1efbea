"""Cart API routes.

The buyer is identified by a Bearer token or the ``X-Session-Id`` header.
Every mutation is rejected with 409 while a checkout holds the cart lock.
"""

import logging
from datetime import date
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from app.core.rate_limit import limiter
from app.core.security import CurrentIdentity
from app.db.session import DbSession
from app.services.cart_lock_service import get_cart_lock_manager
from app.services.cart_service import CartService

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Schemas
# ============================================================================


class AddTicketRequest(BaseModel):
    ticket_id: int
    quantity: int = Field(1, ge=1, le=100)
    # Ignored for event and free tickets, which use their own date
    target_date: Optional[date] = None


class AddMenuItemRequest(BaseModel):
    menu_item_id: int
    variant_id: Optional[int] = None
    quantity: int = Field(1, ge=1, le=100)
    target_date: date


class UpdateQuantityRequest(BaseModel):
    quantity: int = Field(..., ge=0, le=100)


class CartLineResponse(BaseModel):
    id: int
    kind: str
    club_id: int
    ticket_id: Optional[int] = None
    menu_item_id: Optional[int] = None
    variant_id: Optional[int] = None
    target_date: date
    quantity: int

    model_config = {"from_attributes": True}


def get_cart_service(db: DbSession) -> CartService:
    return CartService(db, get_cart_lock_manager())


CartServiceDep = Annotated[CartService, Depends(get_cart_service)]


# ============================================================================
# Routes
# ============================================================================


@router.get("")
def get_cart(identity: CurrentIdentity, carts: CartServiceDep) -> Dict[str, Any]:
    """Cart lines with live dynamic prices and a fee preview."""
    return carts.cart_summary(identity)


@router.post("/tickets", response_model=CartLineResponse, status_code=201)
@limiter.limit("60/minute")
def add_ticket(request: Request, body: AddTicketRequest, identity: CurrentIdentity, carts: CartServiceDep):
    line = carts.add_ticket(identity, body.ticket_id, body.quantity, body.target_date)
    return CartLineResponse(
        id=line.id, kind=line.kind.value, club_id=line.club_id, ticket_id=line.ticket_id,
        target_date=line.target_date, quantity=line.quantity,
    )


@router.post("/menu", response_model=CartLineResponse, status_code=201)
@limiter.limit("60/minute")
def add_menu_item(request: Request, body: AddMenuItemRequest, identity: CurrentIdentity, carts: CartServiceDep):
    line = carts.add_menu_item(identity, body.menu_item_id, body.quantity, body.target_date, body.variant_id)
    return CartLineResponse(
        id=line.id, kind=line.kind.value, club_id=line.club_id, menu_item_id=line.menu_item_id,
        variant_id=line.variant_id, target_date=line.target_date, quantity=line.quantity,
    )


@router.patch("/items/{item_id}")
def update_item(item_id: int, body: UpdateQuantityRequest, identity: CurrentIdentity, carts: CartServiceDep):
    line = carts.update_quantity(identity, item_id, body.quantity)
    if line is None:
        return {"removed": True, "id": item_id}
    return {"removed": False, "id": line.id, "quantity": line.quantity}


@router.delete("/items/{item_id}", status_code=204)
def remove_item(item_id: int, identity: CurrentIdentity, carts: CartServiceDep):
    carts.remove_item(identity, item_id)


@router.delete("")
def clear_cart(identity: CurrentIdentity, carts: CartServiceDep):
    removed = carts.clear_cart(identity)
    return {"removed": removed}


@router.get("/lock")
def get_lock_status(identity: CurrentIdentity, carts: CartServiceDep):
    """Whether a checkout currently holds this buyer's cart."""
    locked = carts.is_locked(identity)
    lock = carts.locks.get_lock(identity) if locked else None
    return {
        "locked": locked,
        "transactionId": lock.transaction_id if lock else None,
        "expiresAt": lock.expires_at.isoformat() if lock else None,
    }

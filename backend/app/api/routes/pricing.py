"""Dynamic price quotes for tickets and menu items."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from app.db.session import DbSession
from app.models.menu import MenuItem, MenuItemVariant
from app.models.ticket import Ticket
from app.services.cart_service import find_event_for
from app.services.fee_service import FeeKind, line_fees
from app.services.pricing import PricingResult, price_menu_line, price_ticket
from app.services.pricing.clock import now_utc, today_local

logger = logging.getLogger(__name__)

router = APIRouter()


def _quote(result: PricingResult, fee_kind: FeeKind) -> dict:
    if result.is_blocked:
        return {"blocked": True, "reason": str(result.reason), "price": None}
    fees = line_fees(result.amount, fee_kind)
    return {
        "blocked": False,
        "basePrice": float(result.base_price),
        "price": float(result.amount),
        "reason": str(result.reason) if result.reason is not None else None,
        "dynamicPricingApplied": result.dynamic_applied,
        "platformFee": float(fees.platform_fee),
    }


@router.get("/ticket/{ticket_id}")
def quote_ticket(
    ticket_id: int,
    db: DbSession,
    target_date: Optional[date] = Query(None, alias="date"),
):
    """Current price of a ticket. Event and free tickets use their own date."""
    ticket = db.get(Ticket, ticket_id)
    if ticket is None or ticket.is_deleted or not ticket.is_active:
        raise HTTPException(status_code=404, detail="Ticket not found")

    event = ticket.event if ticket.is_event_ticket else None
    if event is not None:
        day = event.available_date
    elif ticket.is_free and ticket.available_date:
        day = ticket.available_date
    else:
        day = target_date or today_local()

    result = price_ticket(ticket, ticket.club, day, now_utc(), event=event)
    fee_kind = FeeKind.TICKET_EVENT if event is not None else FeeKind.TICKET_GENERAL
    included = [
        {
            "menuItemId": item.menu_item_id,
            "menuItemName": item.menu_item.name,
            "variantId": item.variant_id,
            "variantName": item.variant.name if item.variant else None,
            "quantity": item.quantity,
        }
        for item in (ticket.included_menu_items if ticket.includes_menu_items else [])
    ]
    return {
        "ticketId": ticket.id,
        "date": day.isoformat(),
        "includedMenuItems": included,
        **_quote(result, fee_kind),
    }


@router.get("/menu/{item_id}")
def quote_menu_item(
    item_id: int,
    db: DbSession,
    variant_id: Optional[int] = None,
    target_date: Optional[date] = Query(None, alias="date"),
):
    """Current price of a menu item or one of its variants."""
    item = db.get(MenuItem, item_id)
    if item is None or item.is_deleted or not item.is_active:
        raise HTTPException(status_code=404, detail="Menu item not found")

    variant = None
    if variant_id is not None:
        variant = db.get(MenuItemVariant, variant_id)
        if variant is None or variant.menu_item_id != item.id or variant.is_deleted:
            raise HTTPException(status_code=404, detail="Variant not found")

    day = target_date or today_local()
    event = find_event_for(db, item.club_id, day)
    result = price_menu_line(item, variant, item.club, day, now_utc(), event=event)
    return {
        "menuItemId": item.id,
        "variantId": variant.id if variant else None,
        "date": day.isoformat(),
        "eventId": event.id if event else None,
        **_quote(result, FeeKind.MENU),
    }

"""Dynamic pricing: venue clock, reason vocabulary, tier tables and engine."""

from app.services.pricing.engine import (
    Blocked,
    Priced,
    PricingKind,
    PricingResult,
    price_cover,
    price_event_menu,
    price_event_ticket,
    price_for,
    price_menu,
    price_menu_line,
    price_ticket,
)
from app.services.pricing.reasons import PricingReason

__all__ = [
    "Blocked",
    "Priced",
    "PricingKind",
    "PricingReason",
    "PricingResult",
    "price_cover",
    "price_event_menu",
    "price_event_ticket",
    "price_for",
    "price_menu",
    "price_menu_line",
    "price_ticket",
]

"""Fee calculation for checkout.

One gateway charge per checkout. The club receives 100% of the item value;
the platform commission, gateway fee and tax on the gateway fee are added
on top:

    platform  = tickets * ticket_rate + menu * menu_rate
    gateway   = (subtotal + platform) * variable_rate + fixed_fee
    iva       = gateway * tax_rate
    total     = subtotal + platform + gateway + iva

All amounts are rounded half-up to cents. Rates come from settings.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from app.core.config import settings
from app.core.exceptions import BelowMinimumError
from app.services.pricing.tiers import ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)


class FeeKind(str, Enum):
    TICKET_GENERAL = "ticket_general"
    TICKET_EVENT = "ticket_event"
    MENU = "menu"


@dataclass(frozen=True)
class LineFees:
    """Per-unit fee attribution stored on purchase rows."""

    price: Decimal
    platform_fee: Decimal
    club_receives: Decimal


@dataclass(frozen=True)
class GatewayFees:
    fee: Decimal
    iva: Decimal

    @property
    def total(self) -> Decimal:
        return self.fee + self.iva


@dataclass(frozen=True)
class CheckoutTotals:
    ticket_subtotal: Decimal
    menu_subtotal: Decimal
    subtotal: Decimal
    platform_fee_tickets: Decimal
    platform_fee_menu: Decimal
    platform_receives: Decimal
    gateway_fee: Decimal
    gateway_iva: Decimal
    total_paid: Decimal
    club_receives: Decimal

    @property
    def amount_in_cents(self) -> int:
        return int(round_money(self.total_paid * 100))

    @property
    def is_free(self) -> bool:
        return self.total_paid == ZERO

    def as_dict(self) -> dict:
        return {
            "ticketSubtotal": float(self.ticket_subtotal),
            "menuSubtotal": float(self.menu_subtotal),
            "subtotal": float(self.subtotal),
            "platformReceives": float(self.platform_receives),
            "gatewayFee": float(self.gateway_fee),
            "gatewayIVA": float(self.gateway_iva),
            "totalPaid": float(self.total_paid),
            "clubReceives": float(self.club_receives),
        }


FREE_TOTALS = CheckoutTotals(*(ZERO,) * 10)


def platform_rate(kind: FeeKind) -> Decimal:
    rates = {
        FeeKind.TICKET_GENERAL: settings.platform_fee_ticket_general,
        FeeKind.TICKET_EVENT: settings.platform_fee_ticket_event,
        FeeKind.MENU: settings.platform_fee_menu,
    }
    return to_decimal(rates[kind])


def platform_fee(price, kind: FeeKind) -> Decimal:
    try:
        amount = to_decimal(price)
    except ValueError:
        logger.warning(f"Invalid price {price!r} for platform fee, using zero")
        return ZERO
    if amount <= ZERO:
        return ZERO
    return round_money(amount * platform_rate(kind))


def line_fees(price, kind: FeeKind) -> LineFees:
    try:
        amount = max(to_decimal(price), ZERO)
    except ValueError:
        logger.warning(f"Invalid line price {price!r}, attributing zero fees")
        amount = ZERO
    return LineFees(price=amount, platform_fee=platform_fee(amount, kind), club_receives=amount)


def gateway_fees(amount) -> GatewayFees:
    """Gateway fee and tax on ``amount`` (subtotal plus platform fee)."""
    base = to_decimal(amount)
    if base <= ZERO:
        return GatewayFees(ZERO, ZERO)
    fee = round_money(base * to_decimal(settings.gateway_variable_rate) + to_decimal(settings.gateway_fixed_fee))
    iva = round_money(fee * to_decimal(settings.gateway_tax_rate))
    return GatewayFees(fee, iva)


def allocate_totals(ticket_subtotal, menu_subtotal, is_event: bool = False) -> CheckoutTotals:
    """Totals for one checkout. A zero subtotal yields all-zero totals."""
    tickets = round_money(to_decimal(ticket_subtotal))
    menu = round_money(to_decimal(menu_subtotal))
    subtotal = tickets + menu
    if subtotal <= ZERO:
        return FREE_TOTALS

    ticket_kind = FeeKind.TICKET_EVENT if is_event else FeeKind.TICKET_GENERAL
    fee_tickets = platform_fee(tickets, ticket_kind)
    fee_menu = platform_fee(menu, FeeKind.MENU)
    platform = fee_tickets + fee_menu
    gateway = gateway_fees(subtotal + platform)

    return CheckoutTotals(
        ticket_subtotal=tickets,
        menu_subtotal=menu,
        subtotal=subtotal,
        platform_fee_tickets=fee_tickets,
        platform_fee_menu=fee_menu,
        platform_receives=platform,
        gateway_fee=gateway.fee,
        gateway_iva=gateway.iva,
        total_paid=subtotal + platform + gateway.total,
        club_receives=subtotal,
    )


def ensure_minimum(total) -> None:
    """Reject totals between zero and the minimum. Zero is a free checkout."""
    amount = to_decimal(total)
    minimum = to_decimal(settings.min_transaction_total)
    if ZERO < amount < minimum:
        raise BelowMinimumError(amount, minimum)
